# =============================================================================
# RAG Orchestrator — Question Answering Over the Archive
# =============================================================================
#
# Wires retrieval, per-source enrichment and answer generation into a
# LangGraph StateGraph:
#
#   START ──▶ retrieve ──▶ enrich ──▶ fetch_content ──▶ compose ──▶ generate ──▶ END
#
#   retrieve       — {context, sources} from the retrieval service
#   enrich         — per-source metadata in parallel; tag ids → names;
#                    a "Referência" tag switches citation mode on
#   fetch_content  — per-source full text in parallel, appended to context
#   compose        — final prompt (citation or no-reference instructions)
#   generate       — active AIProvider.generate_text()
#
# FAILURE POLICY:
#   Only retrieve may fail the whole question; ask_question() turns that
#   into RagQueryError with one generic message. A failing source in
#   enrich/fetch_content contributes nothing. A failing generate yields a
#   fixed apology answer, with `sources` still returned.
#
# Fan-out uses asyncio.gather(return_exceptions=True), so results come back
# in source order whatever order the fetches complete in.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from typing import Any

from langgraph.graph import END, START, StateGraph
from typing_extensions import TypedDict

from paperai.config import Settings, get_settings
from paperai.exceptions import RagQueryError
from paperai.models.analysis import ProviderStatus
from paperai.models.rag import RagAnswer, ReferenceDocument
from paperai.services.llm import AIProvider
from paperai.services.repository import DocumentRepository, resolve_tag_names
from paperai.services.retrieval import RetrievalClient

logger = logging.getLogger(__name__)

REFERENCE_TAG = "Referência"

GENERIC_ERROR = (
    "An error occurred while processing your question. Please try again later."
)
GENERATION_ERROR = (
    "An error occurred while generating an answer. Please try again later."
)

CITATION_INSTRUCTION = (
    f'- Since some documents have the "{REFERENCE_TAG}" tag, include citations '
    "to the sources in your answer using the format <citation>AUTHORS. Title. "
    "Journal/Publication. v.Volume, p.Pages, Year.</citation>\n"
    "  Example: <citation>MADUREIRA, F., COLLEGA, D. G., RODRIGUES, H. F., "
    "OLIVEIRA, T. A. C., FREUDENHEIM, A. M. Validação de um Instrumento para "
    'Avaliação Qualitativa do Nado "Crawl". Revista Brasileira de Educação '
    "Física e Esporte. v.22, p.273-284, 2008.</citation>\n"
    "  Use the document title and available metadata to format the citation "
    "appropriately."
)
NO_REFERENCE_INSTRUCTION = (
    "- Do not mention document numbers or source references, answer as if it "
    "were a natural conversation"
)

ANSWER_PROMPT = """You are a helpful assistant that answers questions about documents.

Answer the following question precisely, based on the provided documents:

Question: {question}

Context from relevant documents:
{context}

Source information:
{source_info}{reference_info}

Important instructions:
- Use ONLY information from the provided documents
- If the answer is not contained in the documents, respond: "This information is not contained in the documents." (in the same language as the question)
- Avoid assumptions or speculation beyond the given context
- Answer in the same language as the question was asked
- Before providing your final answer, double-check that all information comes directly from the documents and is accurate
- If you're unsure about any part of the answer, either omit it or clearly state the uncertainty
{citation_instruction}
"""


# ---------------------------------------------------------------------------
# Graph State Schema
# ---------------------------------------------------------------------------


class RagState(TypedDict, total=False):
    """
    State that flows through the RAG graph.

    Uses total=False so nodes only need to return the keys they update.
    """

    # --- Input ---
    question: str

    # --- Set by retrieve ---
    context: str
    sources: list[dict[str, Any]]

    # --- Set by enrich / fetch_content ---
    source_info: str
    reference_documents: list[ReferenceDocument]
    citation_mode: bool
    enriched_context: str

    # --- Set by compose / generate ---
    prompt: str
    answer: str


def _source_title(source: dict[str, Any]) -> str:
    return source.get("title") or f"Document {source.get('doc_id')}"


class RagOrchestrator:
    """
    Answers questions about the archive from retrieved documents.

    Collaborators are injected; the graph is compiled once per instance.
    """

    def __init__(
        self,
        retrieval: RetrievalClient,
        repository: DocumentRepository,
        provider: AIProvider,
        settings: Settings | None = None,
    ) -> None:
        self._retrieval = retrieval
        self._repository = repository
        self._provider = provider
        self._settings = settings or get_settings()
        self.graph = self._build_graph()

    def _build_graph(self):
        builder = StateGraph(RagState)
        builder.add_node("retrieve", self.retrieve_node)
        builder.add_node("enrich", self.enrich_node)
        builder.add_node("fetch_content", self.fetch_content_node)
        builder.add_node("compose", self.compose_node)
        builder.add_node("generate", self.generate_node)

        builder.add_edge(START, "retrieve")
        builder.add_edge("retrieve", "enrich")
        builder.add_edge("enrich", "fetch_content")
        builder.add_edge("fetch_content", "compose")
        builder.add_edge("compose", "generate")
        builder.add_edge("generate", END)
        return builder.compile()

    # -----------------------------------------------------------------------
    # Public API
    # -----------------------------------------------------------------------

    async def ask_question(self, question: str) -> RagAnswer:
        """
        Answer `question` from the archive.

        Raises:
            RagQueryError: If context could not be retrieved.
        """
        logger.info("Answering question: '%s'", question[:80])
        try:
            result = await self.graph.ainvoke({"question": question})
        except Exception as e:
            logger.error("Error in ask_question: %s", e)
            raise RagQueryError(GENERIC_ERROR) from e

        sources = result.get("sources", [])
        logger.info(
            "Question answered: sources=%d, citation_mode=%s",
            len(sources), result.get("citation_mode", False),
        )
        return RagAnswer(answer=result["answer"], sources=sources)

    async def get_ai_status(self) -> ProviderStatus:
        return await self._provider.check_status()

    # -----------------------------------------------------------------------
    # Node Functions
    # -----------------------------------------------------------------------
    # Each node receives the full state and returns a partial update dict.
    # -----------------------------------------------------------------------

    async def retrieve_node(self, state: RagState) -> dict:
        data = await self._retrieval.get_context(
            state["question"], self._settings.rag_max_sources,
        )
        sources = data.get("sources") or []
        logger.info("Retrieved %d sources", len(sources))
        return {"context": data.get("context") or "", "sources": sources}

    async def enrich_node(self, state: RagState) -> dict:
        """Resolve tags per source and collect citation metadata."""
        sources = [s for s in state.get("sources", []) if s.get("doc_id")]
        if not sources:
            return {
                "source_info": "",
                "reference_documents": [],
                "citation_mode": False,
            }

        try:
            await self._repository.ensure_tag_cache()
        except Exception as e:
            logger.error("Error loading tag cache: %s", e)

        enriched = await asyncio.gather(
            *(self._enrich_source(source) for source in sources),
        )

        lines: list[str] = []
        references: list[ReferenceDocument] = []
        for entry in enriched:
            if entry is None:
                continue
            line, reference = entry
            lines.append(line)
            if reference is not None:
                references.append(reference)

        return {
            "source_info": "".join(lines),
            "reference_documents": references,
            "citation_mode": bool(references),
        }

    async def _enrich_source(
        self, source: dict,
    ) -> tuple[str, ReferenceDocument | None] | None:
        """Tag line and optional citation entry for one source; None on failure."""
        doc_id = source["doc_id"]
        try:
            document = await self._repository.get_document(doc_id)
            tag_ids = document.get("tags")
            if not isinstance(tag_ids, list):
                return None
            tag_names = resolve_tag_names(tag_ids, self._repository.tag_cache)

            reference = None
            if REFERENCE_TAG in tag_names:
                reference = ReferenceDocument(
                    id=doc_id,
                    title=(
                        document.get("title")
                        or source.get("title")
                        or "Unknown Title"
                    ),
                    created=document.get("created_date") or document.get("created"),
                    correspondent=(
                        document.get("correspondent_name")
                        or document.get("correspondent")
                    ),
                    tags=tag_names,
                    excerpt=ReferenceDocument.make_excerpt(document.get("content")),
                )

            line = f"Document: {_source_title(source)}, Tags: {', '.join(tag_names)}\n"
            return line, reference
        except Exception as e:
            logger.error("Error fetching document metadata for %s: %s", doc_id, e)
            return None

    async def fetch_content_node(self, state: RagState) -> dict:
        """Append each source's full text to the retrieval context."""
        context = state.get("context", "")
        sources = state.get("sources", [])
        if not sources:
            return {"enriched_context": context}

        contents = await asyncio.gather(
            *(self._fetch_content(source) for source in sources),
        )
        extra = "\n\n".join(c for c in contents if c)
        return {"enriched_context": f"{context}\n\n{extra}"}

    async def compose_node(self, state: RagState) -> dict:
        references = state.get("reference_documents", [])
        if state.get("citation_mode") and references:
            citation_instruction = CITATION_INSTRUCTION
            reference_info = "\n\nReference Documents Metadata:\n" + "\n\n".join(
                doc.to_prompt_block() for doc in references
            )
        else:
            citation_instruction = NO_REFERENCE_INSTRUCTION
            reference_info = ""

        prompt = ANSWER_PROMPT.format(
            question=state["question"],
            context=state.get("enriched_context", ""),
            source_info=state.get("source_info", ""),
            reference_info=reference_info,
            citation_instruction=citation_instruction,
        )
        return {"prompt": prompt}

    async def generate_node(self, state: RagState) -> dict:
        try:
            answer = await self._provider.generate_text(state["prompt"])
        except Exception as e:
            logger.error("Error generating answer with AI service: %s", e)
            answer = GENERATION_ERROR
        return {"answer": answer}

    # -----------------------------------------------------------------------
    # Internal Helpers
    # -----------------------------------------------------------------------

    async def _fetch_content(self, source: dict[str, Any]) -> str:
        doc_id = source.get("doc_id")
        if not doc_id:
            return ""
        try:
            content = await self._repository.get_document_content(doc_id)
        except Exception as e:
            logger.error("Error fetching content for document %s: %s", doc_id, e)
            return ""
        return f"Full document content for {_source_title(source)}:\n{content}"
