# models.py
"""
Domain models for merchmate.

Every structure that crosses a boundary (HTTP, AI output, Printify JSON) is a
pydantic model so it is validated once where it enters the system. Wire
models use camelCase aliases, matching the JSON the frontend consumes.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional, Set, Union

from pydantic import AliasChoices, BaseModel, Field, TypeAdapter, field_validator
from pydantic.alias_generators import to_camel
from typing_extensions import Annotated


class WireModel(BaseModel):
    """Base for models serialized to the frontend or parsed from AI output."""

    class Config:
        alias_generator = to_camel
        populate_by_name = True

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, mode="json")


# ===================================================================
# Conversation primitives
# ===================================================================

class Phase(str, enum.Enum):
    INTAKE = "intake"
    DESIGN_REFINEMENT = "design_refinement"
    PRODUCT_SELECTION = "product_selection"
    CONFIGURED = "configured"


class Message(BaseModel):
    role: Literal["user", "assistant"]
    content: str

    class Config:
        frozen = True


class ProductDetails(WireModel):
    """What the user asked for. Every field is optional free text."""
    type: Optional[str] = None
    color: Optional[str] = None
    size: Optional[str] = None
    material: Optional[str] = None

    @field_validator("type", "color", "size", "material", mode="before")
    @classmethod
    def _to_text(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        # Classifiers sometimes answer "size": 10; anything non-scalar is dropped
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return None

    def is_empty(self) -> bool:
        return not any([self.type, self.color, self.size, self.material])


# ===================================================================
# Designs
# ===================================================================

DesignStatus = Literal["refining", "approved"]


class DesignRecord(WireModel):
    """One generation in a design lineage. Superseded, never edited in place."""
    image_url: str
    analysis: Optional[str] = None
    original_prompt: str
    current_prompt: str
    status: DesignStatus = "refining"

    def approved(self) -> "DesignRecord":
        return self.model_copy(update={"status": "approved"})


# ===================================================================
# Catalog (Printify blueprints)
# ===================================================================

class CatalogVariant(BaseModel):
    id: int
    title: str = ""
    price: float = 0.0
    enabled: bool = Field(True, validation_alias=AliasChoices("enabled", "is_enabled"))
    attributes: Dict[str, str] = Field(default_factory=dict, validation_alias=AliasChoices("attributes", "options"))

    @field_validator("attributes", mode="before")
    @classmethod
    def _stringify_attributes(cls, value: Any) -> Any:
        if isinstance(value, dict):
            return {str(k): str(v) for k, v in value.items() if v is not None}
        return value


class CatalogEntry(BaseModel):
    """A Printify blueprint. Scored and reordered, never modified."""
    id: int
    title: str
    description: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    variants: List[CatalogVariant] = Field(default_factory=list)

    @field_validator("variants", mode="before")
    @classmethod
    def _none_to_empty(cls, value: Any) -> Any:
        return value or []


class SearchPage(WireModel):
    page: List[CatalogEntry]
    has_more: bool
    total_remaining: int


# ===================================================================
# Orchestrator responses (one per turn)
# ===================================================================

class DesignPrompts(WireModel):
    original: str
    current: str


class ChatResponse(WireModel):
    type: Literal["chat"] = "chat"
    message: str


class DesignResponse(WireModel):
    type: Literal["design"] = "design"
    image_url: str
    analysis: Optional[str] = None
    prompts: DesignPrompts
    status: DesignStatus
    message: Optional[str] = None

    @classmethod
    def from_record(cls, record: DesignRecord, message: Optional[str] = None) -> "DesignResponse":
        return cls(
            image_url=record.image_url,
            analysis=record.analysis,
            prompts=DesignPrompts(original=record.original_prompt, current=record.current_prompt),
            status=record.status,
            message=message,
        )


class DesignAndProductsResponse(WireModel):
    type: Literal["design_and_products"] = "design_and_products"
    design: DesignRecord
    products: List[CatalogEntry]
    has_more: bool
    status: Literal["approved", "selecting"]
    message: Optional[str] = None


class ProductSelectionResponse(WireModel):
    type: Literal["product_selection"] = "product_selection"
    status: Literal["selecting", "confirmed"]
    selected_entry_id: int
    message: Optional[str] = None


OrchestratorResponse = Annotated[
    Union[ChatResponse, DesignResponse, DesignAndProductsResponse, ProductSelectionResponse],
    Field(discriminator="type"),
]
ResponseAdapter = TypeAdapter(OrchestratorResponse)


def dump_response(response: BaseModel) -> str:
    """Serializes a response the way it travels inside the chat envelope."""
    return ResponseAdapter.dump_json(response, by_alias=True, exclude_none=True).decode()


def load_response(raw: str):
    return ResponseAdapter.validate_json(raw)


# ===================================================================
# AI classifications (parsed once, at the boundary)
# ===================================================================

class IntentParse(WireModel):
    type: Literal["intent_parse"] = "intent_parse"
    product_details: ProductDetails = Field(default_factory=ProductDetails)
    design_content: str = ""

    @field_validator("design_content", mode="before")
    @classmethod
    def _none_to_blank(cls, value: Any) -> Any:
        if value is None:
            return ""
        return value.strip() if isinstance(value, str) else value


class DesignFeedback(WireModel):
    type: Literal["design_feedback"] = "design_feedback"
    is_approved: bool
    changes: Optional[str] = None


class ProductChoice(WireModel):
    type: Literal["product_selection"] = "product_selection"
    action: Literal["select", "more", "unclear"]
    index: Optional[int] = None


class ChatReply(WireModel):
    type: Literal["chat"] = "chat"
    message: str = ""


Classification = Annotated[
    Union[IntentParse, DesignFeedback, ProductChoice, ChatReply],
    Field(discriminator="type"),
]
ClassificationAdapter = TypeAdapter(Classification)


class SelectionMessage(WireModel):
    """Structured selection sent by the frontend when a product card is clicked."""
    type: Literal["product_selection"]
    entry_id: int = Field(validation_alias=AliasChoices("entryId", "entry_id", "blueprintId"))


# ===================================================================
# Product configuration
# ===================================================================

SAGA_STEPS = ("provider-resolved", "variants-resolved", "asset-uploaded", "product-created", "published")


class SagaStep(WireModel):
    name: str
    status: Literal["done", "failed"]
    detail: Optional[str] = None


class ConfigurationSaga(WireModel):
    """Recorded outcome of each configuration step, so a retry resumes instead of restarting."""
    entry_id: int
    design_url: str
    provider_id: Optional[int] = None
    variant_ids: List[int] = Field(default_factory=list)
    upload_id: Optional[str] = None
    product_id: Optional[str] = None
    steps: List[SagaStep] = Field(default_factory=list)

    def is_done(self, name: str) -> bool:
        return any(s.name == name and s.status == "done" for s in self.steps)

    def record(self, name: str, status: str, detail: Optional[str] = None) -> None:
        self.steps = [s for s in self.steps if s.name != name]
        self.steps.append(SagaStep(name=name, status=status, detail=detail))


class ProductConfigResult(WireModel):
    product_id: str
    status: Literal["success"] = "success"


# ===================================================================
# Conversation state
# ===================================================================

class ConversationContext(BaseModel):
    """Mutable per-conversation state. Owned by the orchestrator, one per conversation."""
    conversation_id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    phase: Phase = Phase.INTAKE
    history: List[Message] = Field(default_factory=list)
    product_details: ProductDetails = Field(default_factory=ProductDetails)
    design_content: str = ""
    current_design: Optional[DesignRecord] = None
    design_history: List[DesignRecord] = Field(default_factory=list)
    design_approved: bool = False
    ranked_catalog: Optional[List[CatalogEntry]] = None  # None until the first search
    shown_entry_ids: Set[int] = Field(default_factory=set)
    last_page: List[CatalogEntry] = Field(default_factory=list)
    selected_entry: Optional[CatalogEntry] = None
    product_config: Optional[ProductConfigResult] = None
    configuration: Optional[ConfigurationSaga] = None
    last_active: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def touch(self) -> None:
        self.last_active = datetime.now(timezone.utc)
