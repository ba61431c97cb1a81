from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional, Union

FileSet = Dict[str, str]


class _CamelModel(BaseModel):
    # model output uses camelCase keys; python code uses snake_case
    model_config = ConfigDict(populate_by_name=True)


# -------------------------
# Pipeline records
# -------------------------
class GenerationPlan(BaseModel):
    create: List[str] = Field(default_factory=list, description="All files to generate (created and updated)")
    delete: List[str] = Field(default_factory=list)
    total: int = 0
    completed: List[str] = Field(default_factory=list, description="Planned files seen in the stream so far")


class GenerationProgress(_CamelModel):
    total_files_planned: int = Field(0, alias="totalFilesPlanned")
    files_in_this_batch: List[str] = Field(default_factory=list, alias="filesInThisBatch")
    completed_files: List[str] = Field(default_factory=list, alias="completedFiles")
    remaining_files: List[str] = Field(default_factory=list, alias="remainingFiles")
    current_batch: int = Field(1, alias="currentBatch")
    total_batches: int = Field(1, alias="totalBatches")
    is_complete: bool = Field(True, alias="isComplete")


class EditFailure(BaseModel):
    path: str
    search: str
    reason: str = "search fragment not found"


class ParsedBatch(BaseModel):
    explanation: str = ""
    files: FileSet = Field(default_factory=dict)
    deleted_files: List[str] = Field(default_factory=list)
    progress: Optional[GenerationProgress] = None
    truncated: bool = False
    failed_edits: List[EditFailure] = Field(default_factory=list)


class PartialFile(BaseModel):
    content: str
    is_complete: bool = False


class ExtractionResult(BaseModel):
    complete_files: FileSet = Field(default_factory=dict)
    partial_files: Dict[str, Union[str, PartialFile]] = Field(default_factory=dict)
    summary: str = ""


class LastResponse(BaseModel):
    raw: str = ""
    timestamp: float = 0.0
    chars: int = 0
    files_detected: List[str] = Field(default_factory=list)
    plan: Optional[GenerationPlan] = None


class ContinuationState(BaseModel):
    is_active: bool = True
    original_prompt: str
    system_instruction: str = ""
    progress: GenerationProgress
    accumulated_files: FileSet = Field(default_factory=dict)
    current_batch: int = 0
    retry_attempts: int = 0
    last_response: Optional[LastResponse] = None


# -------------------------
# Provider boundary
# -------------------------
class ImageInput(_CamelModel):
    data: str = Field(..., description="base64 payload")
    mime_type: str = Field("image/png", alias="mimeType")


class ConversationMessage(BaseModel):
    role: str
    content: str


class GenerationRequest(_CamelModel):
    prompt: str
    system_instruction: str = Field("", alias="systemInstruction")
    images: Optional[List[ImageInput]] = None
    response_format: str = Field("text", alias="responseFormat")
    conversation_history: Optional[List[ConversationMessage]] = Field(None, alias="conversationHistory")
    max_tokens: Optional[int] = Field(None, alias="maxTokens")
    temperature: Optional[float] = None


class StreamChunk(BaseModel):
    text: str = ""
    done: bool = False


class TokenUsage(BaseModel):
    input_tokens: int = 0
    output_tokens: int = 0
    total_tokens: int = 0


class ProviderResponse(BaseModel):
    text: str = ""
    finish_reason: Optional[str] = None
    usage: Optional[TokenUsage] = None


class StreamResult(BaseModel):
    full_text: str
    chunk_count: int = 0
    detected_files: List[str] = Field(default_factory=list)
    provider_response: Optional[ProviderResponse] = None
    final_plan: Optional[GenerationPlan] = None
    last_response: Optional[LastResponse] = None


# -------------------------
# Outcomes
# -------------------------
class Proposal(BaseModel):
    label: str
    files: FileSet


class TruncatedContent(BaseModel):
    raw_response: str
    prompt: str
    system_instruction: str = ""
    attempt: int = 0


class GenerationOutcome(BaseModel):
    status: str = Field(..., description="complete | partial | recovered")
    label: str
    files: FileSet = Field(default_factory=dict, description="Proposed file set")
    changed_files: FileSet = Field(default_factory=dict)
    deleted_files: List[str] = Field(default_factory=list)
    missing_files: List[str] = Field(default_factory=list)
    explanation: str = ""
    batches: int = 0
    truncated: bool = False
    warnings: List[str] = Field(default_factory=list)
    metadata: Dict[str, Any] = Field(default_factory=dict)


# -------------------------
# HTTP
# -------------------------
class GenerateRequest(BaseModel):
    prompt: str
    system_instruction: Optional[str] = None
    files: FileSet = Field(default_factory=dict, description="Working file set before this generation")
    images: Optional[List[ImageInput]] = None
    conversation_history: Optional[List[ConversationMessage]] = None
    diff_mode: bool = False
    model: Optional[str] = None
    session_id: str = "default"
    options: Optional[Dict[str, Any]] = {}


class RetryTruncatedRequest(BaseModel):
    truncated: TruncatedContent
    files: FileSet = Field(default_factory=dict)
    model: Optional[str] = None
    session_id: str = "default"
