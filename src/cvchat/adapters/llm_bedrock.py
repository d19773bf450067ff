# src/cvchat/adapters/llm_bedrock.py
import json
import logging
from typing import Any, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from cvchat.core.errors import InferenceError

logger = logging.getLogger("cvchat.llm")


class BedrockClaude:
    """Anthropic Messages API on Bedrock; a single non-streaming completion per call."""

    def __init__(
        self,
        model_id: str,
        region: str = "us-east-1",
        max_tokens: int = 80,
        temperature: float = 0.2,
        stop_sequences: Optional[List[str]] = None,
        client: Any = None,
        connect_timeout: float = 2.0,
        read_timeout: float = 10.0,
    ):
        if not model_id:
            raise ValueError("BedrockClaude needs LLM_MODEL_ID")
        self.model_id = model_id
        self.max_tokens = max_tokens
        self.temperature = temperature
        # the Messages API rejects whitespace-only stop sequences
        self.stop_sequences = [s for s in (stop_sequences or []) if s and s.strip()]
        dropped = len(stop_sequences or []) - len(self.stop_sequences)
        if dropped:
            logger.warning("[llm] ignoring %d blank/whitespace-only stop sequence(s)", dropped)
        logger.info("[llm] initializing Bedrock client, bedrock_region=%s", region)
        self.client = client or boto3.client(
            "bedrock-runtime",
            region_name=region,
            config=Config(connect_timeout=connect_timeout, read_timeout=read_timeout, retries={"max_attempts": 2}),
        )

    def answer(self, system: str, prompt: str) -> str:
        body = {
            "anthropic_version": "bedrock-2023-05-31",
            "max_tokens": self.max_tokens,
            "temperature": self.temperature,
            "system": system,
            "messages": [{"role": "user", "content": [{"type": "text", "text": prompt}]}],
        }
        if self.stop_sequences:
            body["stop_sequences"] = self.stop_sequences
        try:
            resp = self.client.invoke_model(
                modelId=self.model_id,
                body=json.dumps(body).encode("utf-8"),
                contentType="application/json",
                accept="application/json",
            )
            out = json.loads(resp["body"].read())
        except (ClientError, BotoCoreError) as e:
            logger.exception("[llm] invoke failed")
            raise InferenceError(f"llm call failed: {e}") from e
        except (KeyError, ValueError) as e:
            raise InferenceError(f"bad llm response: {e}") from e

        txt = "".join(p.get("text", "") for p in out.get("content", []) if p.get("type") == "text").strip()
        if out.get("stop_reason") == "max_tokens":
            logger.info("[llm] reply truncated at max_tokens=%d", self.max_tokens)
        return txt
