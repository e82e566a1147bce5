"""
Services Layer

Pure business logic services that:
- Accept domain inputs (gateway ports, plans, clock instants)
- Return domain outputs (plans, readiness, completion outcomes)
- Do NOT depend on HTTP request/response objects
- Do NOT mutate data unless explicitly designed to (completion recording)
"""
