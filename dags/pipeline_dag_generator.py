"""
Dynamic DAG generator that reads JSON configs and creates Airflow DAGs.

This module scans the dags/configs/ directory for JSON configuration files
and automatically generates one bulk upsert DAG per file using the
DAGBuilder class.
"""

import json
from datetime import datetime, timedelta
from pathlib import Path
from typing import Any, Dict

from airflow import DAG

from dag_builder import DAGBuilder


def parse_date(date_str: str) -> datetime:
    """
    Parse date string to datetime object.

    Args:
        date_str: Date string in format 'YYYY-MM-DD' or 'YYYY-MM-DD HH:MM:SS'

    Returns:
        datetime: Parsed datetime object
    """
    try:
        # Try full datetime format first
        return datetime.strptime(date_str, "%Y-%m-%d %H:%M:%S")
    except ValueError:
        # Fall back to date-only format
        return datetime.strptime(date_str, "%Y-%m-%d")


def parse_retry_delay(minutes: int) -> timedelta:
    """Convert minutes to timedelta for retry_delay."""
    return timedelta(minutes=minutes)


def load_pipeline_config(config_path: str) -> Dict[str, Any]:
    """
    Load and validate pipeline configuration from JSON file.

    Args:
        config_path: Path to JSON configuration file

    Returns:
        Dict[str, Any]: Parsed configuration dictionary

    Raises:
        ValueError: If required fields are missing
        json.JSONDecodeError: If JSON is invalid
    """
    with open(config_path, "r") as f:
        config = json.load(f)

    # Validate required fields
    required_fields = ["dag_id", "source", "destination"]
    missing_fields = [field for field in required_fields if field not in config]

    if missing_fields:
        raise ValueError(
            f"Config {config_path} is missing required fields: {', '.join(missing_fields)}"
        )

    for section in ("source", "destination"):
        if "type" not in config[section]:
            raise ValueError(f"Config {config_path}: '{section}' must include 'type' field")

    return config


def create_dag_from_config(config: Dict[str, Any]) -> DAG:
    """
    Create an Airflow DAG from a configuration dictionary.

    Example config structure:
        {
            "dag_id": "users_upsert",
            "description": "Nightly users upsert",
            "schedule": "@daily",
            "start_date": "2025-01-01",
            "catchup": false,
            "tags": ["upsert"],
            "default_args": {
                "owner": "airflow",
                "retries": 2,
                "retry_delay_minutes": 5
            },
            "source": {"type": "delimited_file", ...},
            "destination": {"type": "postgres_upsert", ...}
        }

    Two DAGs must not upsert into the same table concurrently; set
    "max_active_runs": 1 (the default here) and keep one DAG per table.
    """
    # Extract DAG parameters
    dag_id = config["dag_id"]
    description = config.get("description", f"Bulk upsert pipeline: {dag_id}")
    schedule = config.get("schedule", config.get("schedule_interval", None))  # Support both for backward compatibility
    start_date = parse_date(config.get("start_date", "2025-01-01"))
    catchup = config.get("catchup", False)
    tags = config.get("tags", ["upsert", "auto-generated"])
    max_active_runs = config.get("max_active_runs", 1)

    # Build default_args
    default_args_config = config.get("default_args", {})
    default_args = {
        "owner": default_args_config.get("owner", "airflow"),
        "depends_on_past": default_args_config.get("depends_on_past", False),
        "retries": default_args_config.get("retries", 1),
    }

    # Add retry_delay if specified
    if "retry_delay_minutes" in default_args_config:
        default_args["retry_delay"] = parse_retry_delay(
            default_args_config["retry_delay_minutes"]
        )

    dag = DAG(
        dag_id=dag_id,
        description=description,
        schedule=schedule,
        start_date=start_date,
        catchup=catchup,
        tags=tags,
        max_active_runs=max_active_runs,
        default_args=default_args,
    )

    with dag:
        DAGBuilder.build_upsert_pipeline(
            source_config=config["source"],
            destination_config=config["destination"],
        )

    return dag


def generate_dags_from_configs(configs_dir_path: str | None = None) -> Dict[str, DAG]:
    """
    Scan configs directory and generate DAGs for all JSON files.

    Args:
        configs_dir_path: Path to configs directory. If None, uses dags/configs/

    Returns:
        Dict[str, DAG]: Dictionary mapping dag_id to DAG object

    Note:
        Invalid configs are reported and skipped; the remaining files are
        still processed.
    """
    if configs_dir_path is None:
        configs_dir = Path(__file__).parent / "configs"
    else:
        configs_dir = Path(configs_dir_path)

    if not configs_dir.exists():
        print(f"Configs directory not found: {configs_dir}")
        return {}

    config_files = sorted(configs_dir.glob("*.json"))

    if not config_files:
        print(f"No JSON config files found in {configs_dir}")
        return {}

    print(f"Found {len(config_files)} config file(s) in {configs_dir}")

    dags = {}
    for config_file in config_files:
        try:
            print(f"Loading config: {config_file.name}")
            config = load_pipeline_config(str(config_file))
            dag = create_dag_from_config(config)
            dags[dag.dag_id] = dag
            print(f"  ✓ Generated DAG: {dag.dag_id}")
        except Exception as e:
            print(f"  ✗ Error generating DAG from {config_file.name}: {e}")
            continue

    print(f"\nSuccessfully generated {len(dags)} DAG(s)")
    return dags


# ============================================================================
# Auto-register DAGs with Airflow
# ============================================================================
# Airflow only picks up DAG objects bound at module level.

_generated_dags = generate_dags_from_configs()

for dag_id, dag_obj in _generated_dags.items():
    globals()[dag_id] = dag_obj
