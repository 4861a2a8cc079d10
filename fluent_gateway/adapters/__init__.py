"""上游服务适配器：机器翻译与 LLM 上下文生成。"""

from fluent_gateway.adapters.base import BaseTranslationAdapter
from fluent_gateway.adapters.llm_context import LLMContextAdapter

__all__ = ["BaseTranslationAdapter", "LLMContextAdapter"]
