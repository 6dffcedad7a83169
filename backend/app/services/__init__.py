"""
Services Layer

Pure business logic services that:
- Accept domain inputs (IDs, sessions, plain results, etc.)
- Return domain outputs (standings, slot outcomes, cascade reports)
- Do NOT depend on HTTP request/response objects
- Do NOT mutate data unless explicitly designed to (progression_engine, match_store)
"""
