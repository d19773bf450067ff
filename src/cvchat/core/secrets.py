# src/cvchat/core/secrets.py
import boto3

_sm = None
_cache = {}


def _client():
    global _sm
    if _sm is None:
        _sm = boto3.client("secretsmanager")
    return _sm


def get_secret(arn: str) -> str:
    if not arn:
        return ""
    if arn in _cache:
        return _cache[arn]
    resp = _client().get_secret_value(SecretId=arn)
    val = resp.get("SecretString", "")
    _cache[arn] = val
    return val


def resolve(value: str, arn: str) -> str:
    """Plain env value wins; otherwise read the Secrets Manager ARN."""
    return value or get_secret(arn)
