"""LLM service module.

Provides the language model abstraction layer (Groq, Google Gemini, Ollama).

Key modules:
- llm.py: Provider factory and task-based model selection
- structured_invoker.py: Schema-constrained completion and JSON repair
- llm_schemas.py: Pydantic schemas for structured outputs
"""
