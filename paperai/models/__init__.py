# =============================================================================
# Models Package — Pydantic V2 Records
# =============================================================================
#   - analysis.py: AnalysisRequest / AnalysisResult and their parts
#   - rag.py: RagAnswer and the per-call ReferenceDocument
# =============================================================================
