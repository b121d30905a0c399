import os

import boto3
from botocore.exceptions import ClientError

from .constants import EnvVars, SSMParams
from .logger import logger


def get_ssm_param_value(boto_session: boto3.Session, param_name: str) -> str:
    ssm_client = boto_session.client("ssm")
    try:
        response = ssm_client.get_parameter(Name=param_name, WithDecryption=True)
        return response["Parameter"]["Value"]
    except ClientError as e:
        logger.error("Failed to get SSM parameter '%s': %s", param_name, e)
        raise


def load_secrets_from_ssm(
    boto_session: boto3.Session, base_path: str, params: dict[EnvVars, SSMParams]
) -> None:
    """Export each missing secret environment variable from its SSM parameter."""
    for env_var, ssm_param in params.items():
        if os.environ.get(env_var.value):
            continue
        param_name = f"{base_path}/{ssm_param.value}"
        try:
            param_value = get_ssm_param_value(boto_session, param_name)
        except ClientError:
            continue
        if param_value:
            os.environ[env_var.value] = param_value
            logger.info("Set environment variable '%s' from SSM", env_var.value)
