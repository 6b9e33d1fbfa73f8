"""Customization engine: selection state and price calculation."""

import logging
from decimal import Decimal
from typing import Any, Iterable, Optional

from .errors import SelectionValidationError
from .models import CustomizationOption, Product, SelectionState, SelectionValue, SubmissionPayload
from .quantization import DEFAULT_NAME_PROFILES, DEFAULT_PROFILES, QuantizationProfile, to_decimal

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
DEFAULT_STEP = Decimal("1")


def sort_options(options: Iterable[Any]) -> list[CustomizationOption]:
    """Return well-formed options ordered by ``order``, keeping catalog order on ties."""
    valid = [option for option in options if isinstance(option, CustomizationOption) and option.id]
    return sorted(valid, key=lambda option: option.order)


def is_selected(value: Any) -> bool:
    """An entry counts as selected unless it is missing or blank."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


class CustomizationEngine:
    """
    Maintains selection state for a product and prices it.

    The engine is stateless: every operation takes the current state and
    returns a new one, leaving the input untouched.
    """

    def __init__(
        self,
        profiles: Optional[dict[str, QuantizationProfile]] = None,
        name_profiles: Optional[dict[str, str]] = None,
    ) -> None:
        """
        Initialize the engine.

        Args:
            profiles: Quantization profiles by name. Defaults to the lens power profile.
            name_profiles: Option display name -> profile name, for options that
                do not carry an explicit quantization_profile.
        """
        self.profiles = DEFAULT_PROFILES if profiles is None else profiles
        self.name_profiles = DEFAULT_NAME_PROFILES if name_profiles is None else name_profiles

    def profile_for(self, option: CustomizationOption) -> Optional[QuantizationProfile]:
        """Return the snapping profile for a numeric option, if any."""
        if option.type != "numeric":
            return None
        name = option.quantization_profile or self.name_profiles.get(option.name)
        if not name:
            return None
        profile = self.profiles.get(name)
        if profile is None:
            logger.warning(f"Option {option.id} references unknown quantization profile {name!r}")
        return profile

    def initialize(self, product: Optional[Product], options: Iterable[Any]) -> SelectionState:
        """
        Seed a selection state with one entry per option.

        Numeric options fall back to ``min`` and then to zero when they have no
        default. Choice options without a default are seeded blank, which
        counts as unselected.
        """
        state: SelectionState = {}
        for option in sort_options(options):
            if option.id in state:
                continue
            state[option.id] = self._default_for(option)
        if product is not None:
            logger.debug(f"Seeded {len(state)} option(s) for product {product.id}")
        return state

    def _default_for(self, option: CustomizationOption) -> SelectionValue:
        if option.type == "numeric":
            for candidate in (option.default_value, option.min):
                number = to_decimal(candidate)
                if number is not None:
                    return number
            return ZERO

        default = option.default_value
        if default is None:
            return ""
        if isinstance(default, Decimal):
            default = str(default)
        if option.options and option.choice_for(default) is None:
            logger.warning(f"Default {default!r} of option {option.id} is not one of its choices")
        return default

    def set_value(
        self,
        state: SelectionState,
        options: Iterable[CustomizationOption],
        option_id: str,
        raw_value: Any,
    ) -> SelectionState:
        """
        Return a new state with ``option_id`` set to ``raw_value``.

        Numeric values are snapped when the option has a quantization profile.
        Unknown option ids leave the state untouched and return it as is.
        """
        option = next((o for o in options if o.id == option_id), None)
        if option is None:
            logger.debug(f"Ignoring value for unknown option {option_id}")
            return state

        value = raw_value
        if option.type == "numeric":
            number = to_decimal(raw_value)
            if number is not None:
                profile = self.profile_for(option)
                value = profile.snap(number) if profile else number
        elif raw_value is not None and not isinstance(raw_value, str):
            value = str(raw_value)

        return {**state, option_id: value}

    def compute_total(
        self,
        product: Optional[Product],
        options: Iterable[CustomizationOption],
        state: SelectionState,
    ) -> Decimal:
        """
        Base price plus the adjustment of every selected option.

        Choice options add the matched choice's adjustment; a value no longer
        in the catalog adds nothing. Numeric options add their flat adjustment.
        """
        if product is None:
            return ZERO

        total = product.base_price
        for option in options:
            value = state.get(option.id)
            if not is_selected(value):
                continue
            if option.type in ("color", "select"):
                choice = option.choice_for(value)
                if choice and choice.price_adjustment:
                    total += choice.price_adjustment
            elif option.price_adjustment:
                total += option.price_adjustment
        return total

    def resolve_step(self, option: CustomizationOption, current_value: Any = None) -> Decimal:
        """Step size for the increment control of a numeric option."""
        profile = self.profile_for(option)
        if profile is not None:
            number = to_decimal(current_value)
            if number is None:
                number = to_decimal(option.default_value) or ZERO
            return profile.step_for(number)
        if option.step:
            return option.step
        return DEFAULT_STEP

    def missing_required(
        self, options: Iterable[CustomizationOption], state: SelectionState
    ) -> list[CustomizationOption]:
        """Required options without a selected value."""
        return [o for o in options if o.required and not is_selected(state.get(o.id))]

    def validate(self, options: Iterable[CustomizationOption], state: SelectionState) -> None:
        """
        Check that every required option has a value.

        Raises:
            SelectionValidationError: Listing the unselected required options
        """
        missing = self.missing_required(options, state)
        if missing:
            raise SelectionValidationError({o.id: o.name for o in missing})

    def build_submission(
        self,
        product: Product,
        options: Iterable[CustomizationOption],
        state: SelectionState,
    ) -> SubmissionPayload:
        """Validate the state and build the payload handed to the cart."""
        options = list(options)
        self.validate(options, state)
        return SubmissionPayload(
            product_id=product.id,
            selections=dict(state),
            total_price=self.compute_total(product, options, state),
        )
