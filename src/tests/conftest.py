"""Pytest configuration and fixtures for service layer tests."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import create_engine, inspect
from sqlalchemy.orm import sessionmaker, scoped_session

from src.models import (
    ComponentIngredient,
    Ingredient,
    IngredientType,
    Product,
    ProductIngredient,
    ProductIngredientType,
    ProductionTask,
    ProductionTaskItem,
    ProductionTaskStatus,
    RecipeCategory,
    RecipeComponent,
    RecipeFamily,
    RecipeType,
    RecipeVersion,
)
from src.models.base import Base
from src.utils.config import reset_config

TENANT = "bakery-1"
OTHER_TENANT = "bakery-2"

_CONFIG_VARIABLES = (
    "BAKEHOUSE_ENV",
    "BAKEHOUSE_DATABASE_URL",
    "BAKEHOUSE_CONSUMPTION_EPSILON_GRAMS",
    "BAKEHOUSE_COST_BREAKDOWN_TOP_N",
    "BAKEHOUSE_COST_HISTORY_POINTS",
    "BAKEHOUSE_STRICT_RESOLUTION",
)


@pytest.fixture(autouse=True)
def clean_config(monkeypatch):
    """Every test starts from default settings."""
    for name in _CONFIG_VARIABLES:
        monkeypatch.delenv(name, raising=False)
    reset_config()
    yield
    reset_config()


@pytest.fixture(scope="function")
def test_db():
    """Provide a clean test database for each test function.

    This fixture:
    1. Creates an in-memory SQLite database
    2. Creates all tables
    3. Provides the database to the test
    4. Drops all tables after the test completes
    """
    # Create in-memory SQLite database for testing
    engine = create_engine("sqlite:///:memory:", echo=False)

    # Create all tables
    Base.metadata.create_all(engine)

    # Create session factory
    session_factory = sessionmaker(bind=engine, expire_on_commit=False)
    Session = scoped_session(session_factory)

    # Monkey-patch the global session factory for tests
    import src.services.database as db_module

    original_get_session = db_module.get_session_factory
    db_module.get_session_factory = lambda: Session

    # Provide database to test
    yield Session

    # Cleanup
    Session.remove()
    Base.metadata.drop_all(engine)

    # Restore original session factory
    db_module.get_session_factory = original_get_session


def _dec(value):
    return None if value is None else Decimal(str(value))


class BakeryBuilder:
    """Creates committed ledger, recipe and product rows for one tenant.

    Recipe lines are plain dicts:
        {"ingredient": Ingredient, "ratio": 100}      base ingredient
        {"family": RecipeFamily, "flour_ratio": 0.3}  pre-dough
        {"family": RecipeFamily, "ratio": 20}         extra
    """

    def __init__(self, Session, tenant_id=TENANT):
        self.Session = Session
        self.tenant_id = tenant_id

    def _save(self, *objects):
        session = self.Session()
        session.add_all(objects)
        session.commit()

    def ingredient(
        self,
        name,
        stock=0,
        value=0,
        is_flour=False,
        water_content=0,
        ingredient_type=IngredientType.STANDARD,
        tenant_id=None,
    ):
        ingredient = Ingredient(
            tenant_id=tenant_id or self.tenant_id,
            name=name,
            ingredient_type=IngredientType(ingredient_type).value,
            is_flour=is_flour,
            water_content=_dec(water_content),
            current_stock_in_grams=_dec(stock),
            current_stock_value=_dec(value),
        )
        self._save(ingredient)
        return ingredient

    def _line(self, spec, sort_order):
        line = ComponentIngredient(
            ratio=_dec(spec.get("ratio")),
            flour_ratio=_dec(spec.get("flour_ratio")),
            sort_order=sort_order,
        )
        if "ingredient" in spec:
            line.ingredient_id = spec["ingredient"].id
        else:
            line.linked_family_id = spec["family"].id
        return line

    def recipe(
        self,
        name,
        lines=None,
        components=None,
        loss_ratio=0,
        division_loss=0,
        recipe_type=RecipeType.MAIN,
        category=RecipeCategory.BREAD,
        output_ingredient=None,
        tenant_id=None,
    ):
        """Create a family with one active version.

        Pass `lines` for a single component, or `components` as a list of
        {"name", "lines", "loss_ratio", "division_loss"} dicts.
        """
        if components is None:
            components = [
                {
                    "name": "Main dough",
                    "lines": lines or [],
                    "loss_ratio": loss_ratio,
                    "division_loss": division_loss,
                }
            ]

        family = RecipeFamily(
            tenant_id=tenant_id or self.tenant_id,
            name=name,
            recipe_type=RecipeType(recipe_type).value,
            category=RecipeCategory(category).value,
            output_ingredient_id=output_ingredient.id if output_ingredient else None,
        )
        version = RecipeVersion(version=1, is_active=True)
        family.versions.append(version)
        for index, spec in enumerate(components):
            component = RecipeComponent(
                name=spec.get("name", f"Stage {index + 1}"),
                loss_ratio=_dec(spec.get("loss_ratio", 0)),
                division_loss=_dec(spec.get("division_loss", 0)),
                sort_order=index,
            )
            for line_index, line_spec in enumerate(spec.get("lines", [])):
                component.ingredients.append(self._line(line_spec, line_index))
            version.components.append(component)
        self._save(family)
        return family

    def add_line(self, family, spec):
        """Append a line to the root component of a family's active version."""
        session = self.Session()
        stored = session.get(RecipeFamily, family.id)
        root = stored.active_version.components[0]
        line = self._line(spec, len(root.ingredients))
        root.ingredients.append(line)
        session.commit()
        return line

    def product(self, name, family, base_dough_weight, addons=None):
        """Create a product on the family's active version.

        addons: [{"ingredient" | "extra", "ratio" | "weight_in_grams", "line_type"}]
        """
        product = Product(
            version_id=family.versions[0].id,
            name=name,
            base_dough_weight=_dec(base_dough_weight),
        )
        for spec in addons or []:
            line = ProductIngredient(
                line_type=ProductIngredientType(
                    spec.get("line_type", ProductIngredientType.MIX_IN)
                ).value,
                ratio=_dec(spec.get("ratio")),
                weight_in_grams=_dec(spec.get("weight_in_grams")),
            )
            if "ingredient" in spec:
                line.ingredient_id = spec["ingredient"].id
            else:
                line.linked_extra_id = spec["extra"].id
            product.ingredients.append(line)
        self._save(product)
        return product

    def legacy_task(self, items, start_date=date(2026, 3, 2), status=ProductionTaskStatus.PENDING):
        """A task stored without a recipe snapshot, as older tasks were."""
        task = ProductionTask(
            tenant_id=self.tenant_id,
            status=ProductionTaskStatus(status).value,
            start_date=start_date,
        )
        for product, quantity in items:
            task.items.append(ProductionTaskItem(product_id=product.id, quantity=_dec(quantity)))
        self._save(task)
        return task

    def stock(self, ingredient):
        """Fresh (grams, value) of an ingredient, given as an instance or an id.

        The id of an instance comes from its identity key, so instances left
        expired and detached by a rolled-back service call still work.
        """
        if isinstance(ingredient, int):
            ingredient_id = ingredient
        else:
            ingredient_id = inspect(ingredient).identity[0]
        session = self.Session()
        stored = session.get(Ingredient, ingredient_id)
        session.refresh(stored)
        return (
            Decimal(str(stored.current_stock_in_grams)),
            Decimal(str(stored.current_stock_value)),
        )


@pytest.fixture
def bakery(test_db):
    """Builder for rows of the default tenant."""
    return BakeryBuilder(test_db)


@pytest.fixture
def other_bakery(test_db):
    """Builder for rows of a second tenant."""
    return BakeryBuilder(test_db, OTHER_TENANT)


@pytest.fixture
def country_loaf(bakery):
    """Flour 100 / water 68 / salt 2 main dough with a 30% poolish (100/100).

    Per 1150 g loaf: flour weight reference 500 g, poolish 300 g, so
    flour 650 g, water 490 g, salt 10 g.

    Stock: 10 kg flour for 12.00, 200 g salt for 0.40, untracked water.
    """
    flour = bakery.ingredient("Bread flour", stock=10000, value=12, is_flour=True)
    water = bakery.ingredient(
        "Water", water_content=1, ingredient_type=IngredientType.NON_INVENTORIED
    )
    salt = bakery.ingredient("Salt", stock=200, value="0.40")
    poolish = bakery.recipe(
        "Poolish",
        [{"ingredient": flour, "ratio": 100}, {"ingredient": water, "ratio": 100}],
        recipe_type=RecipeType.PRE_DOUGH,
    )
    loaf = bakery.recipe(
        "Country Loaf",
        [
            {"ingredient": flour, "ratio": 100},
            {"ingredient": water, "ratio": 68},
            {"ingredient": salt, "ratio": 2},
            {"family": poolish, "flour_ratio": "0.3"},
        ],
    )
    product = bakery.product("Country Loaf", loaf, 1150)

    class CountryLoaf:
        pass

    data = CountryLoaf()
    data.flour = flour
    data.water = water
    data.salt = salt
    data.poolish = poolish
    data.family = loaf
    data.product = product
    return data

