from __future__ import annotations

import os
from datetime import datetime, timedelta

from airflow import DAG
from airflow.providers.docker.operators.docker import DockerOperator
from docker.types import Mount

DEFAULT_ARGS = {
    "owner": "insurance-platform",
    "depends_on_past": False,
    "email_on_failure": False,
    "email_on_retry": False,
    "retries": 1,
    "retry_delay": timedelta(minutes=10),
}

COMPOSE_PROJECT = os.environ.get("COMPOSE_PROJECT_NAME", "weather-insurance")
DOCKER_NETWORK = f"{COMPOSE_PROJECT}_default"
API_IMAGE = os.environ.get("API_IMAGE", "weather-insurance-api:latest")
DATA_MOUNT = Mount(target="/app/data", source="weather_insurance_data", type="volume")

ENV_KEYS = [
    "STORE_BACKEND",
    "WEATHER_INSURANCE_DB_PATH",
    "OPEN_METEO_BASE_URL",
    "REFRESH_LOCATIONS",
    "LOG_LEVEL",
]

ENVIRONMENT = {key: value for key in ENV_KEYS if (value := os.environ.get(key))}


def _job(task_id: str, *command: str) -> DockerOperator:
    return DockerOperator(
        task_id=task_id,
        image=API_IMAGE,
        command=["python", "-m", "jobs", *command],
        docker_url="unix://var/run/docker.sock",
        auto_remove=True,
        network_mode=DOCKER_NETWORK,
        environment=ENVIRONMENT,
        mounts=[DATA_MOUNT],
        mount_tmp_dir=False,
        do_xcom_push=False,
    )


with DAG(
    dag_id="refresh_weather_daily",
    description="Refresh oracle weather readings, then expire and re-check open policies",
    schedule="0 */6 * * *",
    start_date=datetime(2024, 1, 1),
    catchup=False,
    default_args=DEFAULT_ARGS,
    max_active_runs=1,
    tags=["weather-insurance", "oracle"],
) as dag:

    refresh_weather = _job("refresh_weather", "refresh-weather")
    sweep_policies = _job("sweep_policies", "sweep")

    refresh_weather >> sweep_policies
