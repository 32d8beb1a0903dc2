# =============================================================================
# paperai — Document Metadata Extraction & Corpus Q&A
# =============================================================================
# Extracts structured metadata (title, correspondent, tags, type, date,
# language, custom fields) from archived documents with an LLM, and answers
# natural-language questions about the archive through a retrieval service.
#
# Package structure:
#   paperai/
#   ├── config.py     → Pydantic Settings (immutable, passed explicitly)
#   ├── exceptions.py → Error taxonomy shared by all layers
#   ├── models/       → Pydantic V2 records (analysis results, RAG answers)
#   ├── services/     → Token budgeting, prompt assembly, response
#   │                    normalization, AI provider adapters, retrieval client
#   └── agents/       → LangGraph RAG orchestration
# =============================================================================
