"""
Common Utilities for PgPool Usage Examples

Provides output formatting helpers shared by all usage examples.
"""

from typing import Any, Dict


def print_section(title: str, width: int = 60):
    """
    Print a formatted section header.

    Args:
        title: Section title
        width: Width of the header line
    """
    print("\n" + "=" * width)
    print(f" {title}")
    print("=" * width)


def print_step(step_num: int, description: str):
    """Print a step description."""
    print(f"\n[Step {step_num}] {description}")


def print_success(message: str):
    print(f"[SUCCESS] {message}")


def print_error(message: str):
    print(f"[ERROR] {message}")


def print_warning(message: str):
    print(f"[WARNING] {message}")


def print_info(key: str, value: Any):
    """Print information in key-value format."""
    print(f"  - {key}: {value}")


def print_dict(data: Dict[str, Any], indent: int = 2):
    """Print a nested dict, one key per line."""
    for key, value in data.items():
        if isinstance(value, dict):
            print(" " * indent + f"{key}:")
            print_dict(value, indent + 2)
        else:
            print(" " * indent + f"{key}: {value}")
