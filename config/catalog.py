"""
Reference lists for data entry: units, locations and products.

This module loads the lists from catalog.yaml so a deployment can adapt
them without code changes.
"""

import logging
from pathlib import Path
from typing import Dict, List

import yaml

logger = logging.getLogger(__name__)


def _get_catalog_file() -> Path:
    """
    Determine which catalog file to use.

    Priority:
    1. catalog.yaml (deployment's custom lists, gitignored)
    2. catalog.yaml.example (template/fallback)

    Returns:
        Path to the catalog file to use

    Raises:
        FileNotFoundError: If no catalog file exists
    """
    config_dir = Path(__file__).parent

    custom_catalog = config_dir / "catalog.yaml"
    if custom_catalog.exists():
        return custom_catalog

    example_catalog = config_dir / "catalog.yaml.example"
    if example_catalog.exists():
        logger.debug("Using catalog.yaml.example")
        return example_catalog

    raise FileNotFoundError(
        "No catalog configuration found.\n"
        "Please copy config/catalog.yaml.example to config/catalog.yaml"
    )


def _load_catalog() -> dict:
    """
    Load the catalog from YAML.

    Returns:
        Dictionary with 'units', 'market_locations', 'unloading_locations'
        and 'products' keys
    """
    catalog_file = _get_catalog_file()
    with open(catalog_file, 'r', encoding='utf-8') as f:
        catalog = yaml.safe_load(f) or {}

    logger.debug(f"Loaded {len(catalog.get('units', []))} units from {catalog_file.name}")
    return catalog


_catalog = _load_catalog()

# Unit value -> display label
UNITS: Dict[str, str] = {
    str(unit['value']): str(unit.get('label', unit['value']))
    for unit in _catalog.get('units', [])
}
MARKET_LOCATIONS: List[str] = list(_catalog.get('market_locations', []))
UNLOADING_LOCATIONS: List[str] = list(_catalog.get('unloading_locations', []))
PRODUCTS: List[str] = list(_catalog.get('products', []))


def validate_unit(unit: str) -> bool:
    """
    Check that a unit value exists in the catalog.

    Args:
        unit: Unit value such as "kg"

    Returns:
        True if the unit is known
    """
    return unit.strip() in UNITS


def unit_label(unit: str) -> str:
    """Return the display label for a unit, or the value itself if unknown."""
    return UNITS.get(unit, unit)


def locations_for(record_type: str) -> List[str]:
    """
    Return the suggested locations for a record type.

    Purchases happen at markets; unloadings and deliveries at drop-off points.
    """
    if record_type == "Purchase":
        return MARKET_LOCATIONS
    return UNLOADING_LOCATIONS
