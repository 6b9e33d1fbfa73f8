"""
Tests for the customization engine.
"""
from decimal import Decimal

import pytest

from sijoer_server.customization import CustomizationEngine, sort_options
from sijoer_server.errors import SelectionValidationError
from sijoer_server.models import CustomizationOption, OptionChoice, Product


@pytest.fixture
def engine():
    return CustomizationEngine()


def numeric(option_id, **kwargs):
    return CustomizationOption(id=option_id, name=kwargs.pop("name", option_id), type="numeric", **kwargs)


class TestInitialize:
    """Seeding selection state from option defaults."""

    def test_seeds_every_option_once(self, engine, product, options):
        """Should create exactly one entry per option id"""
        state = engine.initialize(product, options)

        assert set(state) == {"color", "power"}
        assert state["color"] == "blue"
        assert state["power"] == 0

    def test_is_idempotent(self, engine, product, options):
        """Should produce equal states for identical inputs"""
        assert engine.initialize(product, options) == engine.initialize(product, options)

    def test_numeric_default_falls_back_to_min_then_zero(self, engine, product):
        """Should prefer default_value, then min, then 0"""
        options = [
            numeric("a", default_value=Decimal("300"), min=Decimal("100")),
            numeric("b", min=Decimal("100")),
            numeric("c"),
        ]

        state = engine.initialize(product, options)

        assert state == {"a": Decimal("300"), "b": Decimal("100"), "c": Decimal("0")}

    def test_choice_without_default_is_blank(self, engine, product):
        """Should seed a blank, unselected value"""
        option = CustomizationOption(
            id="tint", name="Tint", type="color", options=[OptionChoice(value="grey", label="Grey")]
        )

        assert engine.initialize(product, [option]) == {"tint": ""}

    def test_skips_malformed_entries(self, engine, product, options):
        """Should ignore entries that are not options"""
        state = engine.initialize(product, [None, {"id": "raw"}, *options])

        assert set(state) == {"color", "power"}

    def test_follows_display_order(self, engine, product):
        """Should order by the order field, keeping catalog order on ties"""
        options = [numeric("z", order=2), numeric("y", order=1), numeric("x", order=2)]

        assert list(engine.initialize(product, options)) == ["y", "z", "x"]
        assert [o.id for o in sort_options(options)] == ["y", "z", "x"]


class TestSetValue:
    """Updating one option value."""

    def test_snaps_lens_power(self, engine, product, options):
        """Should store the snapped value for a profiled option"""
        state = engine.initialize(product, options)

        updated = engine.set_value(state, options, "power", 512)

        assert updated["power"] == Decimal("500")

    def test_returns_new_state_sharing_other_entries(self, engine, product, options):
        """Should leave the input untouched and reuse unchanged values"""
        state = engine.initialize(product, options)

        updated = engine.set_value(state, options, "power", 600)

        assert updated is not state
        assert state["power"] == 0
        assert updated["color"] is state["color"]

    def test_unknown_option_is_a_no_op(self, engine, product, options):
        """Should return the same state for an unknown option id"""
        state = engine.initialize(product, options)

        assert engine.set_value(state, options, "missing", 5) is state

    def test_unprofiled_numeric_is_not_snapped(self, engine, product):
        """Should keep values of options without a profile"""
        options = [numeric("axis", name="Axis", step=Decimal("10"))]

        state = engine.set_value({}, options, "axis", "95")

        assert state["axis"] == Decimal("95")

    def test_legacy_option_name_selects_profile(self, engine):
        """Should snap options matched by their configured display name"""
        options = [numeric("legacy", name="近视度数")]

        assert engine.set_value({}, options, "legacy", 537)["legacy"] == Decimal("550")

    def test_custom_name_mapping(self):
        """Should use the injected name mapping instead of the default one"""
        engine = CustomizationEngine(name_profiles={"Power": "lens_power"})
        options = [numeric("p", name="Power"), numeric("q", name="近视度数")]

        state = engine.set_value(engine.set_value({}, options, "p", 512), options, "q", 512)

        assert state == {"p": Decimal("500"), "q": Decimal("512")}

    def test_non_numeric_input_for_numeric_option_is_stored_raw(self, engine, options):
        """Should not fail on unparseable input"""
        assert engine.set_value({}, options, "power", "abc")["power"] == "abc"


class TestComputeTotal:
    """Price calculation."""

    def test_end_to_end_quote(self, engine, product, options):
        """Should add the choice adjustment and nothing for the numeric option"""
        state = engine.set_value(engine.initialize(product, options), options, "power", 512)

        assert state["power"] == 500
        assert engine.compute_total(product, options, state) == Decimal("120")

    def test_empty_state_is_base_price(self, engine, product, options):
        assert engine.compute_total(product, options, {}) == product.base_price

    def test_is_deterministic(self, engine, product, options):
        state = engine.initialize(product, options)

        assert engine.compute_total(product, options, state) == engine.compute_total(product, options, state)

    def test_removed_choice_contributes_zero(self, engine, product, options):
        """Should ignore a selection whose choice left the catalog"""
        state = engine.initialize(product, options)
        options[0] = options[0].model_copy(update={"options": []})

        assert engine.compute_total(product, options, state) == Decimal("100")

    def test_numeric_flat_adjustment(self, engine, product):
        """Should add a numeric option's flat adjustment only when it has a value"""
        options = [numeric("cyl", price_adjustment=Decimal("15"))]

        assert engine.compute_total(product, options, {"cyl": Decimal("75")}) == Decimal("115")
        assert engine.compute_total(product, options, {"cyl": ""}) == Decimal("100")

    def test_missing_product_is_zero(self, engine, options):
        assert engine.compute_total(None, options, {"color": "blue"}) == 0


class TestResolveStep:
    """Increment step for numeric inputs."""

    def test_profiled_step_depends_on_value(self, engine, options):
        power = options[1]

        assert engine.resolve_step(power, Decimal("500")) == 25
        assert engine.resolve_step(power, Decimal("550")) == 50
        assert engine.resolve_step(power, None) == 25

    def test_flat_step_from_option(self, engine):
        assert engine.resolve_step(numeric("axis", step=Decimal("10")), 700) == 10

    def test_defaults_to_one(self, engine):
        assert engine.resolve_step(numeric("plain"), "junk") == 1


class TestValidation:
    """Required option checks before submission."""

    def test_missing_required_option_blocks_submission(self, engine, product):
        """Should list every unselected required option"""
        options = [
            CustomizationOption(
                id="color", name="Color", type="select", required=True,
                options=[OptionChoice(value="blue", label="Blue")],
            ),
        ]

        with pytest.raises(SelectionValidationError) as exc_info:
            engine.build_submission(product, options, engine.initialize(product, options))

        assert exc_info.value.missing == {"color": "Color"}

    def test_builds_payload(self, engine, product, options):
        """Should carry the product, selections and total"""
        state = engine.set_value(engine.initialize(product, options), options, "power", 512)

        payload = engine.build_submission(product, options, state)

        assert payload.product_id == "p1"
        assert payload.selections == {"color": "blue", "power": Decimal("500")}
        assert payload.total_price == Decimal("120")


class TestOptionModel:
    """Parsing of backend option rows."""

    def test_number_type_is_numeric(self):
        option = CustomizationOption.model_validate(
            {"id": "o", "name": "Power", "type": "number", "options": None, "min": 0, "max": 1500}
        )

        assert option.type == "numeric"
        assert option.options == []
