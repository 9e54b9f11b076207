"""Completion client: the remote call and the provider fallback policy."""

from . import fmt
from .errors import ConfigurationError, RemoteCallError
from .providers import ProviderRegistry, Selection

DEFAULT_TEMPERATURE = 0.7


def call_llm(base_url, model_id, messages, temperature, *, api_key, verbose=False):
    """Call an OpenAI-compatible endpoint through LiteLLM. Returns the reply text.

    Any failure, including an empty reply, raises RemoteCallError.
    """
    import litellm

    litellm.suppress_debug_info = True

    model_str = f"openai/{model_id}"
    if verbose:
        fmt.info(f"Calling model {model_str} at {base_url} with temperature={temperature}")

    try:
        response = litellm.completion(
            model=model_str,
            messages=messages,
            temperature=temperature,
            api_base=base_url,
            api_key=api_key,
        )
    except Exception as e:
        raise RemoteCallError(str(e)) from e

    try:
        content = response.choices[0].message.content
    except (AttributeError, IndexError) as e:
        raise RemoteCallError(f"malformed response: {e}") from e
    if content is None:
        raise RemoteCallError("empty response")
    return content


class CompletionClient:
    """Sends conversation turns to the selected provider.

    When the primary provider fails and the secondary has a credential,
    the selection is moved to the secondary's fallback model and the call
    is retried once. The move is permanent for the rest of the session.
    """

    def __init__(
        self,
        registry: ProviderRegistry,
        *,
        temperature: float = DEFAULT_TEMPERATURE,
        system_prompt: str | None = None,
    ):
        self.registry = registry
        self.temperature = temperature
        self.system_prompt = system_prompt

    def candidates(self, selection: Selection) -> list[tuple[str, str]]:
        """Ordered (provider, model) pairs to try, each at most once."""
        reg = self.registry
        result = [(selection.provider, selection.model)]
        if (
            selection.provider == reg.primary
            and reg.secondary != reg.primary
            and reg.fallback_model is not None
            and reg.has_credential(reg.secondary)
        ):
            result.append((reg.secondary, reg.fallback_model))
        return result

    def build_messages(self, turns: list[dict]) -> list[dict]:
        messages = []
        if self.system_prompt:
            messages.append({"role": "system", "content": self.system_prompt})
        messages.extend({"role": t["role"], "content": t["content"]} for t in turns)
        return messages

    def complete(
        self, selection: Selection, turns: list[dict], *, verbose: bool = True
    ) -> str | None:
        """Return the assistant reply for ``turns``, or None on failure.

        Never raises for configuration or remote failures; they are
        reported as warnings.
        """
        messages = self.build_messages(turns)
        for attempt, (provider, model) in enumerate(self.candidates(selection)):
            if attempt > 0:
                selection.provider = provider
                selection.model = model
                fmt.warning(f"falling back to {provider}/{model} for this session")

            try:
                resolved = self.registry.resolve(provider, model)
            except ConfigurationError as e:
                fmt.warning(str(e))
                return None

            try:
                return call_llm(
                    resolved.base_url,
                    resolved.remote_model,
                    messages,
                    self.temperature,
                    api_key=resolved.api_key,
                    verbose=verbose,
                )
            except RemoteCallError as e:
                fmt.warning(f"provider {provider!r} failed: {e}")
        return None
