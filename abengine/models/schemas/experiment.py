from datetime import datetime
from typing import Any, Callable, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


class VariantConfig(BaseModel):
    """Configuration for a single variant in an experiment."""

    variant_id: str
    variant_name: str
    weight: float = Field(
        ...,
        description="Relative share of traffic; normalized over the sum of all variant weights.",
    )
    # Opaque payload handed back to the caller, never interpreted by the engine
    config: Dict[str, Any] = Field(default_factory=dict)


class ExperimentModel(BaseModel):
    """Data model for an experiment as held by the registry."""

    model_config = ConfigDict(frozen=True)

    experiment_id: str = Field(..., description="Unique ID for the experiment.")
    name: str
    description: Optional[str] = None
    variants: List[VariantConfig]
    traffic_allocation: float = Field(
        100.0,
        ge=0.0,
        le=100.0,
        description="Percentage of eligible subjects included in the experiment at all.",
    )
    enabled: bool = True
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    target_url_pattern: Optional[str] = Field(
        None, description="Regular expression searched in the request path."
    )
    audience_predicate: Optional[Callable[[str], bool]] = Field(None, exclude=True)

    def find_variant(self, variant_id: str) -> Optional[VariantConfig]:
        for variant in self.variants:
            if variant.variant_id == variant_id:
                return variant
        return None


class ExperimentCreateModel(BaseModel):
    """Schema for registering an experiment (API input)."""

    experiment_id: str
    name: str
    description: Optional[str] = None
    variants: List[VariantConfig]
    traffic_allocation: float = Field(100.0, ge=0.0, le=100.0)
    enabled: bool = True
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    target_url_pattern: Optional[str] = None

    def to_experiment(self) -> ExperimentModel:
        return ExperimentModel(**self.model_dump())


class ExperimentResponseModel(BaseModel):
    experiment_id: str
    name: str
    description: Optional[str] = None
    variants: List[VariantConfig]
    traffic_allocation: float
    enabled: bool
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    target_url_pattern: Optional[str] = None
    has_audience_predicate: bool = False
    total_weight: float

    @classmethod
    def from_experiment(cls, experiment: ExperimentModel) -> "ExperimentResponseModel":
        return cls(
            **experiment.model_dump(),
            has_audience_predicate=experiment.audience_predicate is not None,
            total_weight=sum(v.weight for v in experiment.variants),
        )


# Built-in experiments, registered unless disabled in settings
DEFAULT_EXPERIMENTS: List[ExperimentModel] = [
    ExperimentModel(
        experiment_id="landing_cta_text",
        name="Landing Page CTA Text",
        description="Test different CTA button texts on landing pages",
        variants=[
            VariantConfig(variant_id="control", variant_name="Control (Reserve Now)", weight=50),
            VariantConfig(variant_id="urgent", variant_name="Urgent (Reserve Your Spot Now)", weight=25),
            VariantConfig(variant_id="benefit", variant_name="Benefit (Join Expert Workshop)", weight=25),
        ],
        traffic_allocation=100,
        enabled=True,
    ),
    ExperimentModel(
        experiment_id="hero_layout",
        name="Hero Section Layout",
        description="Test different hero section layouts",
        variants=[
            VariantConfig(variant_id="control", variant_name="Standard Layout", weight=50),
            VariantConfig(variant_id="video_bg", variant_name="Video Background", weight=50),
        ],
        traffic_allocation=50,
        enabled=False,
    ),
    ExperimentModel(
        experiment_id="pricing_display",
        name="Pricing Display Format",
        description="Test different ways to show pricing",
        variants=[
            VariantConfig(variant_id="control", variant_name="Standard Price", weight=40),
            VariantConfig(variant_id="crossed_out", variant_name="Crossed Out Original", weight=30),
            VariantConfig(variant_id="savings_highlight", variant_name="Highlight Savings", weight=30),
        ],
        traffic_allocation=80,
        enabled=True,
    ),
]
