"""费用估算 — 按词数近似 token 数，再按模型单价计费

The figures are approximate: tokens are estimated from whitespace word
counts (~0.75 words per token), not from the API's tokenizer.
"""

from __future__ import annotations

from enum import Enum


class Model(str, Enum):
    GPT3 = "gpt3"
    GPT4 = "gpt4"
    GPT4_32K = "gpt432k"
    GPT4_TURBO = "gpt4turbo"

    @property
    def api_name(self) -> str:
        return MODEL_API_NAMES[self]

    @classmethod
    def parse(cls, value: str | None, default: "Model | None" = None) -> "Model":
        """Accept either the settings value (``gpt4``) or the API name (``gpt-4``)."""
        if isinstance(value, Model):
            return value
        for model in cls:
            if value in (model.value, model.api_name):
                return model
        if default is not None:
            return default
        raise ValueError(f"Unknown model: {value!r}")


MODEL_API_NAMES = {
    Model.GPT3: "gpt-3.5-turbo",
    Model.GPT4: "gpt-4",
    Model.GPT4_32K: "gpt-4-32k",
    Model.GPT4_TURBO: "gpt-4-1106-preview",
}

# (input, output) 美元 / token
MODEL_RATES = {
    Model.GPT3: (0.000002, 0.000002),
    Model.GPT4: (0.00003, 0.00006),
    Model.GPT4_32K: (0.00006, 0.00012),
    Model.GPT4_TURBO: (0.00001, 0.00003),
}


def count_words(text: str) -> int:
    return len(text.split())


def estimate_tokens(words: int) -> int:
    return words * 1000 // 750


def estimate_text_tokens(text: str) -> int:
    return estimate_tokens(count_words(text))


def calculate_cost(model: Model, input_tokens: int, output_tokens: int) -> float:
    input_rate, output_rate = MODEL_RATES[model]
    return input_tokens * input_rate + output_tokens * output_rate
