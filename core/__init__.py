"""
radar-intake core package.

Modules
───────
models                  — Pydantic data models (Interpretation, RadarDraft, CreatedRadar)
errors                  — InterpretationFailed / InterpretationCancelled / CreationFailed
debouncer               — quiescence-window debouncer for live text input
interpreter             — cancellable streaming interpretation client
flow                    — the intake state machine (input → … → complete)
creator                 — radar creation adapters (HTTP, local store)
interpretation_service  — Claude streaming call behind POST /api/interpret
radar_store             — SQLite-backed radar storage (create, get_all, get_by_id, delete)
"""
