"""Release pipeline domain.

Leaves first:
- version: canonical version and tag from the Cargo manifest
- suite_gate: test suite that gates every build
- build: per-target cargo builds, fanned out concurrently
- package: deterministic archives and sha256 sidecars
- upload: clobbering uploads keyed by release tag
- pipeline: the per-family run state machine
- gate: cross-family conjunction gate for the downstream dispatch
- automerge: dependency-update merge predicate
- events: inbound GitHub triggers as messages
"""

from __future__ import annotations
