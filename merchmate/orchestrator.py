# orchestrator.py
"""
Conversation orchestrator and chat API for merchmate.

This module holds the phase machine that walks a user from a free-text
request to a configured product:

    intake -> design_refinement -> product_selection -> configured

Every inbound message is classified by the AI capability (never by string
matching), the handler for the current phase delegates to exactly one
collaborator (DesignCycle, RankingSearch or ConfigurationBuilder) and exactly
one typed response is returned per turn.

Classification and selection problems are answered in-chat and leave the
phase where it was. Failures of a delegate abort the turn as an
OrchestrationError tagged with the phase and operation; the phase is not
rolled back, and retrying the message is the recovery path.

The orchestrator itself is stateless. All conversation state lives in the
ConversationContext handed to it, which the SessionStore guards with a
per-conversation lock.
"""

import functools
import json
import logging
import re
from typing import Awaitable, Callable, Dict, List, Literal, Optional, Type, TypeVar

from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import Field, ValidationError

from .ai import AIClient
from .configurator import ConfigurationBuilder
from .designs import DesignCycle
from .errors import (
    ClassificationFailure, OrchestrationError, PhaseError, SelectionError
)
from .models import (
    CatalogEntry, ChatResponse, ClassificationAdapter, ConfigurationSaga, ConversationContext,
    DesignAndProductsResponse, DesignFeedback, DesignResponse, IntentParse, Message, Phase,
    ProductChoice, ProductConfigResult, ProductSelectionResponse, SelectionMessage, WireModel,
    dump_response,
)
from .printify import PrintifyClient
from .products import RankingSearch
from .sessions import SessionStore

log = logging.getLogger(__name__)

T = TypeVar("T")

# ===================================================================
# PROMPTS
# ===================================================================

INTENT_PROMPT = """Parse the user's next message into product details and design content.
Respond only with JSON in this exact shape:
{
  "type": "intent_parse",
  "productDetails": {
    "type": "product type if mentioned, else null",
    "color": "color if mentioned, else null",
    "size": "size if mentioned, else null",
    "material": "material if mentioned, else null"
  },
  "designContent": "description of the design content only, without the product"
}"""

FEEDBACK_PROMPT = """The user is reviewing a generated product design.
Decide whether their next message approves the design or requests changes.
Respond only with JSON:
{"type": "design_feedback", "isApproved": true or false, "changes": "description of the requested changes, or null"}"""

SELECTION_PROMPT = """The user was shown these products (zero-based index):
{choices}
Decide what their next message asks for. Respond only with JSON:
{{"type": "product_selection", "action": "select" | "more" | "unclear", "index": zero-based index of the chosen product or null}}
Use "more" when they want to see other options, "unclear" when you cannot tell."""

# --- Assistant copy ---
INTAKE_FALLBACK = "Could you please tell me what kind of product you'd like to customize and what design you'd like on it?"
DESIGN_CREATED = "I've created an initial design based on your description. How does this look? We can make any adjustments needed."
DESIGN_UPDATED = "I've updated the design based on your feedback. How does this look now?"
FEEDBACK_UNCLEAR = "I couldn't tell whether you're happy with this design. Say it looks good to continue, or tell me what to change."
PRODUCTS_FOUND = "Perfect! I've found some products that match your requirements. Take a look at these options and let me know which one you prefer."
PRODUCTS_MORE_HINT = "\n\nIf none of these are quite right, I can show you more options."
PRODUCTS_NONE = "Your design is approved, but I couldn't find any matching products in the catalog right now."
MORE_PRODUCTS = "Here are a few more options."
NO_MORE_PRODUCTS = "That's every product I have for your request. Please pick one of the options you've already seen."
SELECTION_UNCLEAR = "Which product would you like? Tell me its number, or ask to see more options."
SELECTION_OUT_OF_RANGE = "I only showed you {count} options. Please pick a number between 1 and {count}."
NOTHING_SHOWN = "I haven't found any products to show you for this design yet, so there's nothing to pick from. Ask me to search again in a moment."
SELECTION_UNKNOWN_ID = "I couldn't find the product with ID {entry_id}. Please try again."
SELECTION_CONFIRMED = "Great choice! I've selected the {title} for your design."
ALREADY_CONFIGURED = "You've already picked the {title}. I'm ready to set it up as your product."
PRODUCT_PUBLISHED = "Your {title} is set up and published (product {product_id})."


# ===================================================================
# AI OUTPUT PARSING
# ===================================================================

def _extract_json(raw: str) -> str:
    """Pulls the JSON object out of a reply that may wrap it in a ```json fence or prose."""
    fenced = re.search(r"```(?:json)?\s*(\{.*?\})\s*```", raw, re.DOTALL)
    if fenced:
        return fenced.group(1)
    start, end = raw.find("{"), raw.rfind("}")
    if start != -1 and end > start:
        return raw[start:end + 1]
    return raw.strip()


def parse_classification(raw: str, expected: Type[T]) -> T:
    """
    Validates an AI reply against the classification union.

    Raises:
        ClassificationFailure: if the reply is not valid JSON, matches no variant,
            or matches a variant other than `expected`.
    """
    try:
        result = ClassificationAdapter.validate_json(_extract_json(raw or ""))
    except ValidationError as e:
        raise ClassificationFailure(f"Unparseable classification: {e.error_count()} errors", raw) from e
    if not isinstance(result, expected):
        raise ClassificationFailure(f"Expected {expected.__name__}, got {type(result).__name__}", raw)
    return result


def parse_selection_message(content: str) -> Optional[SelectionMessage]:
    """Recognises the structured selection the frontend sends on a product click."""
    text = (content or "").strip()
    if not text.startswith("{"):
        return None
    try:
        return SelectionMessage.model_validate(json.loads(text))
    except (ValueError, ValidationError):
        return None


# ===================================================================
# ORCHESTRATOR
# ===================================================================

class ConversationOrchestrator:
    """Drives one turn of a conversation against its ConversationContext."""

    def __init__(
        self,
        ai: AIClient,
        designs: DesignCycle,
        search: RankingSearch,
        configurator: ConfigurationBuilder,
    ):
        self.ai = ai
        self.designs = designs
        self.search = search
        self.configurator = configurator
        self._handlers: Dict[Phase, Callable] = {
            Phase.INTAKE: self.handle_intake,
            Phase.DESIGN_REFINEMENT: self.handle_design_feedback,
            Phase.PRODUCT_SELECTION: self.handle_product_choice,
            Phase.CONFIGURED: self.handle_configured,
        }

    async def process_message(self, context: ConversationContext, message: Message):
        """Appends the message to history, runs the current phase's handler and returns its response."""
        context.history.append(message)
        log.info(f"Processing message for {context.conversation_id} in phase '{context.phase.value}'")

        response = await self._handlers[context.phase](context, message)

        context.history.append(Message(role="assistant", content=dump_response(response)))
        return response

    async def _call(self, context: ConversationContext, operation: str, awaitable: Awaitable[T]) -> T:
        """Awaits a delegate, tagging any failure with the current phase and operation."""
        try:
            return await awaitable
        except Exception as e:
            log.error(f"Orchestration Error in {context.conversation_id} ({context.phase.value}/{operation}): {e}")
            raise OrchestrationError(context.phase.value, operation, e) from e

    async def _classify(self, context: ConversationContext, operation: str, instruction: str, message: Message, expected: Type[T]) -> T:
        raw = await self._call(
            context, operation,
            self.ai.generate_chat_response([Message(role="user", content=instruction), message]),
        )
        return parse_classification(raw, expected)

    # --- Intake ---

    async def handle_intake(self, context: ConversationContext, message: Message):
        try:
            parsed = await self._classify(context, "parse_intent", INTENT_PROMPT, message, IntentParse)
        except ClassificationFailure as e:
            log.warning(f"Failed to parse user intent: {e}")
            return ChatResponse(message=INTAKE_FALLBACK)

        if not parsed.design_content:
            log.info("Intent parsed without design content; asking again")
            return ChatResponse(message=INTAKE_FALLBACK)

        log.info(
            f"Successfully parsed user intent (product type {parsed.product_details.type!r}, "
            f"design length {len(parsed.design_content)})"
        )
        design = await self._call(context, "generate_design", self.designs.generate(parsed.design_content))

        context.product_details = parsed.product_details
        context.design_content = parsed.design_content
        context.current_design = design
        context.phase = Phase.DESIGN_REFINEMENT
        return DesignResponse.from_record(design, message=DESIGN_CREATED)

    # --- Design refinement ---

    async def handle_design_feedback(self, context: ConversationContext, message: Message):
        try:
            feedback = await self._classify(context, "classify_feedback", FEEDBACK_PROMPT, message, DesignFeedback)
        except ClassificationFailure as e:
            log.warning(f"Failed to classify design feedback: {e}")
            return ChatResponse(message=FEEDBACK_UNCLEAR)

        log.info(f"Processing design feedback (approved={feedback.is_approved})")
        if feedback.is_approved:
            return await self._approve_design(context)

        changes = (feedback.changes or "").strip() or message.content
        revised = await self._call(context, "revise_design", self.designs.revise(context.current_design, changes))
        context.design_history.append(context.current_design)
        context.current_design = revised
        return DesignResponse.from_record(revised, message=DESIGN_UPDATED)

    async def _approve_design(self, context: ConversationContext):
        context.design_approved = True
        context.current_design = context.current_design.approved()

        page = await self._call(
            context, "product_search", self.search.search(context, context.product_details, reset=True)
        )
        context.last_page = page.page
        context.phase = Phase.PRODUCT_SELECTION

        if page.page:
            text = PRODUCTS_FOUND + (PRODUCTS_MORE_HINT if page.has_more else "")
        else:
            text = PRODUCTS_NONE
        return DesignAndProductsResponse(
            design=context.current_design,
            products=page.page,
            has_more=page.has_more,
            status="approved",
            message=text,
        )

    # --- Product selection ---

    async def handle_product_choice(self, context: ConversationContext, message: Message):
        structured = parse_selection_message(message.content)
        if structured is not None:
            return self._select_by_id(context, structured.entry_id)

        try:
            choice = await self._classify(
                context, "classify_selection", self._selection_prompt(context), message, ProductChoice
            )
        except ClassificationFailure as e:
            log.warning(f"Failed to classify product selection: {e}")
            return ChatResponse(message=SELECTION_UNCLEAR)

        if choice.action == "more":
            return await self._more_products(context)

        if choice.action == "select" and choice.index is not None:
            try:
                entry = self.entry_at(context, choice.index)
            except SelectionError as e:
                log.info(f"Rejected selection for {context.conversation_id}: {e}")
                if not context.last_page:
                    return ChatResponse(message=NOTHING_SHOWN)
                return ChatResponse(message=SELECTION_OUT_OF_RANGE.format(count=len(context.last_page)))
            return self._confirm(context, entry)

        return ChatResponse(message=SELECTION_UNCLEAR)

    def _selection_prompt(self, context: ConversationContext) -> str:
        choices = "\n".join(f"{i}. {entry.title}" for i, entry in enumerate(context.last_page)) or "(none)"
        return SELECTION_PROMPT.format(choices=choices)

    async def _more_products(self, context: ConversationContext):
        # Nothing shown yet means the first search came back empty; fetch the catalog again
        nothing_shown = not context.shown_entry_ids
        page = await self._call(
            context, "product_search", self.search.search(context, context.product_details, reset=nothing_shown)
        )
        if not page.page:
            return ChatResponse(message=NOTHING_SHOWN if nothing_shown else NO_MORE_PRODUCTS)
        context.last_page = page.page
        return DesignAndProductsResponse(
            design=context.current_design,
            products=page.page,
            has_more=page.has_more,
            status="selecting",
            message=MORE_PRODUCTS + (PRODUCTS_MORE_HINT if page.has_more else ""),
        )

    @staticmethod
    def entry_at(context: ConversationContext, index: int) -> CatalogEntry:
        """Resolves a zero-based index against the page the user was last shown."""
        if not 0 <= index < len(context.last_page):
            raise SelectionError(index, len(context.last_page))
        return context.last_page[index]

    def _select_by_id(self, context: ConversationContext, entry_id: int):
        shown: List[CatalogEntry] = [
            e for e in (context.ranked_catalog or []) if e.id in context.shown_entry_ids
        ]
        entry = next((e for e in shown if e.id == entry_id), None)
        if entry is None:
            return ChatResponse(message=SELECTION_UNKNOWN_ID.format(entry_id=entry_id))
        log.info(f"Parsed structured product selection: {entry_id}")
        return self._confirm(context, entry)

    def _confirm(self, context: ConversationContext, entry: CatalogEntry):
        context.selected_entry = entry
        context.phase = Phase.CONFIGURED
        return ProductSelectionResponse(
            status="confirmed",
            selected_entry_id=entry.id,
            message=SELECTION_CONFIRMED.format(title=entry.title),
        )

    # --- Configured ---

    async def handle_configured(self, context: ConversationContext, message: Message):
        title = context.selected_entry.title if context.selected_entry else "product"
        if context.product_config:
            return ChatResponse(message=PRODUCT_PUBLISHED.format(title=title, product_id=context.product_config.product_id))
        return ChatResponse(message=ALREADY_CONFIGURED.format(title=title))

    # --- Out-of-band operations ---

    async def start_design(self, context: ConversationContext, prompt: str) -> DesignResponse:
        """Generates a design directly from a prompt, outside the chat flow."""
        if context.phase not in (Phase.INTAKE, Phase.DESIGN_REFINEMENT):
            raise PhaseError(context.phase.value, "generate_design")

        design = await self._call(context, "generate_design", self.designs.generate(prompt))
        if context.current_design is not None:
            context.design_history.append(context.current_design)
        context.current_design = design
        context.design_content = prompt
        context.phase = Phase.DESIGN_REFINEMENT
        return DesignResponse.from_record(design, message=DESIGN_CREATED)

    async def configure_product(self, context: ConversationContext) -> ProductConfigResult:
        """Materialises the selected product with the approved design, resuming a failed attempt."""
        if context.phase != Phase.CONFIGURED or context.selected_entry is None or context.current_design is None:
            raise PhaseError(context.phase.value, "configure_product")
        if context.product_config is not None:
            return context.product_config

        entry = context.selected_entry
        design_url = context.current_design.image_url
        saga = context.configuration
        if saga is None or saga.entry_id != entry.id or saga.design_url != design_url:
            saga = ConfigurationSaga(entry_id=entry.id, design_url=design_url)
            context.configuration = saga

        result = await self._call(context, "configure_product", self.configurator.configure(entry, design_url, saga))
        context.product_config = result
        return result


# ===================================================================
# API ENDPOINTS
# ===================================================================

router = APIRouter(tags=["Conversation"])


class ChatRequest(WireModel):
    content: str
    role: Literal["user", "assistant"] = "user"
    conversation_id: Optional[str] = None


class ChatEnvelope(WireModel):
    role: str = "assistant"
    content: str
    conversation_id: str


class DesignRequest(WireModel):
    prompt: str = Field(..., min_length=1, max_length=2000)
    conversation_id: str


class ConversationOut(WireModel):
    conversation_id: str


@functools.lru_cache(maxsize=1)
def get_session_store() -> SessionStore:
    return SessionStore()


@functools.lru_cache(maxsize=1)
def get_orchestrator() -> ConversationOrchestrator:
    ai = AIClient()
    printify = PrintifyClient()
    return ConversationOrchestrator(
        ai=ai,
        designs=DesignCycle(ai),
        search=RankingSearch(printify.get_blueprints),
        configurator=ConfigurationBuilder(printify),
    )


@router.post("/conversations", status_code=status.HTTP_201_CREATED, summary="Start a conversation")
async def start_conversation(store: SessionStore = Depends(get_session_store)):
    context = store.create()
    return ConversationOut(conversation_id=context.conversation_id).to_wire()


@router.post("/chat", summary="Send one chat message")
async def chat(
    req: ChatRequest,
    store: SessionStore = Depends(get_session_store),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    """
    Runs one turn. The assistant's reply is a typed response serialized as a JSON
    string in `content`. A missing or unknown conversationId starts a new conversation.
    """
    conversation_id = store.get_or_create(req.conversation_id).conversation_id
    async with store.session(conversation_id) as context:
        response = await orchestrator.process_message(context, Message(role=req.role, content=req.content))
    return ChatEnvelope(content=dump_response(response), conversation_id=conversation_id).to_wire()


@router.post("/designs", summary="Generate a design for a conversation")
async def create_design(
    req: DesignRequest,
    store: SessionStore = Depends(get_session_store),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    if store.get(req.conversation_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    async with store.session(req.conversation_id) as context:
        response = await orchestrator.start_design(context, req.prompt)
    return response.to_wire()


@router.post("/conversations/{conversation_id}/configure", summary="Create and publish the selected product")
async def configure_conversation_product(
    conversation_id: str,
    store: SessionStore = Depends(get_session_store),
    orchestrator: ConversationOrchestrator = Depends(get_orchestrator),
):
    if store.get(conversation_id) is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Conversation not found")
    async with store.session(conversation_id) as context:
        result = await orchestrator.configure_product(context)
    return result.to_wire()
