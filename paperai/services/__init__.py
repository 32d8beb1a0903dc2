# =============================================================================
# Services Package — Analysis Pipeline & External Clients
# =============================================================================
#   - tokens.py: Token estimation (tiktoken / chars-per-token) and budgets
#   - restrictions.py: Restricted-taxonomy prompt placeholders
#   - prompts.py: System prompt assembly per analysis mode
#   - normalizer.py: Structured and free-text response normalization
#   - llm.py: AIProvider protocol, response schemas, provider factory
#   - azure.py / ollama.py: The two provider implementations
#   - retrieval.py: Retrieval service HTTP client
#   - repository.py: Document archive collaborator interface
#   - thumbnails.py / transcript.py: Local thumbnail cache, prompt logs
# =============================================================================
