"""
Costing CLI Utility

Command-line interface for the costing and production engine.
No UI required - designed for programmatic and testing use.

Usage Examples:
    # Create the database tables
    python -m src.utils.costing_cli init-db

    # Cost of one unit of product 12
    python -m src.utils.costing_cli cost --tenant bakery-1 12

    # Top ingredient costs of product 12
    python -m src.utils.costing_cli breakdown --tenant bakery-1 12

    # Full priced recipe tree as JSON
    python -m src.utils.costing_cli details --tenant bakery-1 12

    # Ensure task 7 has a recipe snapshot
    python -m src.utils.costing_cli snapshot --tenant bakery-1 7

    # Ingredient consumption of task 7, or of 40 units of product 12
    python -m src.utils.costing_cli consumptions --tenant bakery-1 --task 7
    python -m src.utils.costing_cli consumptions --tenant bakery-1 --product 12 --quantity 40

    # Bill of materials for a day, or for explicit tasks
    python -m src.utils.costing_cli bom --tenant bakery-1 --date 2026-03-01
    python -m src.utils.costing_cli bom --tenant bakery-1 --task 7 --task 8
"""

import sys
import argparse
import json
from decimal import Decimal, InvalidOperation
from pathlib import Path

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent.parent))

from src.services.database import initialize_app_database
from src.services.exceptions import ServiceError
from src.services.bill_of_materials_service import (
    get_bill_of_materials,
    get_bill_of_materials_for_tasks,
)
from src.services.consumption_service import (
    calculate_product_consumptions,
    calculate_task_consumptions,
)
from src.services.costing_service import (
    calculate_product_cost,
    get_calculated_product_details,
    get_cost_breakdown,
    get_cost_history,
)
from src.services.recipe_snapshot_service import build_snapshot
from src.utils.datetime_utils import as_date, utc_today


def _print_json(data) -> None:
    print(json.dumps(data, indent=2, default=str))


def cost_cmd(tenant: str, product_id: int) -> int:
    """Print the unit cost of a product."""
    result = calculate_product_cost(tenant, product_id)
    print(f"Product {product_id}: {result['total_cost']}")
    return 0


def breakdown_cmd(tenant: str, product_id: int) -> int:
    """Print the cost breakdown of a product."""
    for row in get_cost_breakdown(tenant, product_id):
        print(f"  {row['name']:<30} {row['value']:>12}")
    return 0


def history_cmd(tenant: str, product_id: int) -> int:
    """Print the cost history of a product."""
    for point in get_cost_history(tenant, product_id):
        print(f"  {point['date'].isoformat()}  {point['cost']:>12}")
    return 0


def details_cmd(tenant: str, product_id: int) -> int:
    """Print the priced recipe tree of a product as JSON."""
    _print_json(get_calculated_product_details(tenant, product_id))
    return 0


def snapshot_cmd(tenant: str, task_id: int) -> int:
    """Ensure a task has a recipe snapshot."""
    result = build_snapshot(tenant, task_id)
    state = "created" if result["created"] else "already present"
    print(f"Snapshot {result['id']} for task {task_id} {state} "
          f"(schema version {result['schema_version']})")
    return 0


def consumptions_cmd(tenant: str, task_id, product_id, quantity, theoretical: bool) -> int:
    """Print ingredient consumption of a task or of a product quantity."""
    include_losses = not theoretical
    if task_id is not None:
        lines = calculate_task_consumptions(tenant, task_id, include_losses=include_losses)
    elif product_id is not None:
        lines = calculate_product_consumptions(
            tenant, product_id, quantity, include_losses=include_losses
        )
    else:
        print("ERROR: Pass --task or --product")
        return 1

    for line in lines:
        print(f"  {line['ingredient_name']:<30} {line['total_weight']:>14} g")
    return 0


def bom_cmd(tenant: str, target_date, task_ids) -> int:
    """Print the bill of materials for a date or a set of tasks."""
    if task_ids:
        result = get_bill_of_materials_for_tasks(tenant, task_ids)
    else:
        result = get_bill_of_materials(tenant, target_date or utc_today())

    print("Standard items:")
    for row in result["standard_items"]:
        print(
            f"  {row['ingredient_name']:<30} required {row['required_quantity']:>12} g  "
            f"stock {row['current_stock']:>12} g  shortfall {row['shortfall']:>12} g"
        )
    print("Non-inventoried items:")
    for row in result["non_inventoried_items"]:
        print(f"  {row['ingredient_name']:<30} required {row['required_quantity']:>12} g")
    return 0


def _decimal(value: str) -> Decimal:
    try:
        return Decimal(value)
    except InvalidOperation:
        raise argparse.ArgumentTypeError(f"not a number: {value!r}")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Recipe costing and production utility for Bakehouse",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  Unit cost of a product:
    python -m src.utils.costing_cli cost --tenant bakery-1 12

  Bill of materials for a day:
    python -m src.utils.costing_cli bom --tenant bakery-1 --date 2026-03-01
""",
    )

    # Create subparsers for different commands
    subparsers = parser.add_subparsers(dest="command", help="Command to execute")

    subparsers.add_parser("init-db", help="Create database tables")

    for name, help_text in [
        ("cost", "Unit cost of a product"),
        ("breakdown", "Top ingredient costs of a product"),
        ("history", "Cost history of a product"),
        ("details", "Priced recipe tree of a product (JSON)"),
    ]:
        product_parser = subparsers.add_parser(name, help=help_text)
        product_parser.add_argument("--tenant", required=True, help="Tenant identifier")
        product_parser.add_argument("product_id", type=int, help="Product ID")

    snapshot_parser = subparsers.add_parser("snapshot", help="Ensure a task has a recipe snapshot")
    snapshot_parser.add_argument("--tenant", required=True, help="Tenant identifier")
    snapshot_parser.add_argument("task_id", type=int, help="Production task ID")

    consumptions_parser = subparsers.add_parser(
        "consumptions", help="Ingredient consumption of a task or product"
    )
    consumptions_parser.add_argument("--tenant", required=True, help="Tenant identifier")
    consumptions_parser.add_argument("--task", dest="task_id", type=int, help="Production task ID")
    consumptions_parser.add_argument("--product", dest="product_id", type=int, help="Product ID")
    consumptions_parser.add_argument(
        "--quantity", type=_decimal, default=Decimal("1"), help="Units of the product (default 1)"
    )
    consumptions_parser.add_argument(
        "--theoretical",
        action="store_true",
        help="Loss-free consumption instead of total input",
    )

    bom_parser = subparsers.add_parser("bom", help="Bill of materials")
    bom_parser.add_argument("--tenant", required=True, help="Tenant identifier")
    bom_parser.add_argument(
        "--date", dest="target_date", type=as_date, help="Day to plan for (default today)"
    )
    bom_parser.add_argument(
        "--task", dest="task_ids", type=int, action="append", help="Task ID (repeatable)"
    )

    return parser


def main(argv=None):
    """Main CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 1

    # Initialize database (required for all operations)
    initialize_app_database()
    if args.command == "init-db":
        print("Database initialized")
        return 0

    try:
        if args.command == "cost":
            return cost_cmd(args.tenant, args.product_id)
        elif args.command == "breakdown":
            return breakdown_cmd(args.tenant, args.product_id)
        elif args.command == "history":
            return history_cmd(args.tenant, args.product_id)
        elif args.command == "details":
            return details_cmd(args.tenant, args.product_id)
        elif args.command == "snapshot":
            return snapshot_cmd(args.tenant, args.task_id)
        elif args.command == "consumptions":
            return consumptions_cmd(
                args.tenant, args.task_id, args.product_id, args.quantity, args.theoretical
            )
        elif args.command == "bom":
            return bom_cmd(args.tenant, args.target_date, args.task_ids)
        else:
            print(f"Unknown command: {args.command}")
            return 1
    except ServiceError as e:
        print(f"ERROR: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
