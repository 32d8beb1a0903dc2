# =============================================================================
# Agents Package — LangGraph RAG Orchestration
# =============================================================================
#   - rag.py: retrieve → enrich → fetch_content → compose → generate
#
# Citation mode: switched on when a retrieved source carries the reference
# tag; the answer prompt then asks for <citation>...</citation> markers.
# =============================================================================
