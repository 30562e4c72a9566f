"""Hierarchical memory scopes.

Layout (per scope directory):
    <dir>/.strata/
    ├── info.md          # Identity: purpose and rules (required for the chain)
    ├── knowledge.md     # Append-only log of dated, typed, topic-tagged entries
    ├── state.md         # Ephemeral session handoff (2k tokens, expires after 48h)
    └── *.md             # Custom files, exposed as ``custom:<stem>`` roles

Scopes nest: a chain runs from the outermost ancestor scope down to the one
nearest the working path. The directory tree is the only index.
"""
