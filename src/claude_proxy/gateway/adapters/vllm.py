"""vLLM adapter.

vLLM serves the OpenAI Chat Completions API, accepts ``top_k`` as an extra
sampling parameter, and usually runs without a credential.
"""

from claude_proxy.gateway.adapters.openai import OpenAIAdapter


class VLLMAdapter(OpenAIAdapter):
    kind = "vllm"
    unsupported_params = ()
