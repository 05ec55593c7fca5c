from pydantic import BaseModel, ConfigDict, Field, field_validator
from typing import List, Dict, Optional
from enum import Enum

from pixelcore.core.config import settings


class BackgroundAlgorithm(str, Enum):
    AUTO = "auto"
    PORTRAIT = "portrait"
    OBJECT = "object"
    ANIMAL = "animal"


class UpscaleAlgorithm(str, Enum):
    AUTO = "auto"
    LANCZOS = "lanczos"
    BICUBIC = "bicubic"
    ESRGAN = "esrgan"
    WAIFU2X = "waifu2x"
    SRCNN = "srcnn"


class OutputFormat(str, Enum):
    PNG = "png"
    JPEG = "jpeg"
    WEBP = "webp"


class ContentType(str, Enum):
    PHOTO = "photo"
    ART = "art"
    TEXT = "text"
    MIXED = "mixed"


# =============================================================================
# Processing Options
# =============================================================================

class BackgroundRemovalOptions(BaseModel):
    """Options for one background removal operation."""
    model_config = ConfigDict(frozen=True, use_enum_values=False)

    algorithm: BackgroundAlgorithm = Field(BackgroundAlgorithm.AUTO, description="Content hint for the object mask")
    sensitivity: int = Field(25, ge=5, le=50, description="Edge and color-distance threshold knob")
    feather_edges: bool = Field(True, description="Distance-based alpha falloff around the subject")
    preserve_details: bool = Field(True, description="Boost foreground alpha by 5%")
    smoothing_level: int = Field(0, ge=0, le=100, description="Alpha smoothing strength (0 disables)")
    output_format: OutputFormat = Field(OutputFormat.PNG)
    quality: int = Field(settings.DEFAULT_OUTPUT_QUALITY, ge=1, le=100)

    @field_validator("output_format")
    @classmethod
    def validate_output_format(cls, v: OutputFormat) -> OutputFormat:
        if v == OutputFormat.JPEG:
            raise ValueError("Background removal output must keep transparency (png or webp)")
        return v


class UpscaleOptions(BaseModel):
    """Options for one upscaling operation."""
    model_config = ConfigDict(frozen=True, use_enum_values=False)

    scale_factor: float = Field(2.0, ge=1.0, le=3.0)
    primary_algorithm: UpscaleAlgorithm = Field(UpscaleAlgorithm.AUTO)
    enhance_details: bool = Field(True)
    reduce_noise: bool = Field(True)
    sharpen_amount: int = Field(25, ge=0, le=100)
    color_enhancement: bool = Field(True)
    output_format: OutputFormat = Field(OutputFormat.PNG)
    quality: int = Field(settings.DEFAULT_OUTPUT_QUALITY, ge=1, le=100)
    max_output_dimension: int = Field(1536, ge=1, le=1536)


# =============================================================================
# Analysis & Results
# =============================================================================

class DominantColor(BaseModel):
    model_config = ConfigDict(frozen=True)

    r: int
    g: int
    b: int
    frequency: float


class ContentAnalysis(BaseModel):
    """Read-only summary of a buffer, computed once per operation."""
    model_config = ConfigDict(frozen=True)

    # Subject detection (background removal)
    has_human: bool = False
    has_animal: bool = False
    has_object: bool = False
    subject_in_center: bool = False
    background_complexity: float = Field(0.0, ge=0.0, le=1.0)
    dominant_colors: List[DominantColor] = Field(default_factory=list)
    confidence: float = Field(0.3, ge=0.0, le=1.0)

    # Content classification (upscaling)
    content_type: ContentType = ContentType.MIXED
    has_sharp_edges: bool = False
    noise_level: float = Field(0.0, ge=0.0, le=1.0)
    color_complexity: float = Field(0.0, ge=0.0)
    is_pixel_art: bool = False
    compression_artifacts: float = Field(0.0, ge=0.0, le=1.0)


class SafeScale(BaseModel):
    """Effective scale and target size after safety clamping."""
    model_config = ConfigDict(frozen=True)

    requested_scale: float
    effective_scale: float
    target_width: int
    target_height: int

    @property
    def target_pixels(self) -> int:
        return self.target_width * self.target_height


class ProcessingResult(BaseModel):
    """Encoded output plus provenance. Immutable once built."""
    model_config = ConfigDict(frozen=True)

    data: bytes = Field(..., repr=False)
    mime_type: str
    width: int
    height: int
    algorithms_used: List[str] = Field(default_factory=list)
    processing_time_ms: int = 0
    quality_metrics: Dict[str, float] = Field(default_factory=dict)
    confidence: Optional[float] = None
    scale_factor: Optional[float] = None
