"""
HuggingFace Client - Instruction model loading and inference wrapper

Responsibilities:
- Load model with optional 4-bit quantization
- Apply the tokenizer's chat template (system + user turns)
- Generate text completions
- Generate JSON-formatted completions with repair
- Optional diagnostics (token counts, latency)

Design principles:
- Dependency injection (no singleton)
- Fail fast on critical errors (CUDA OOM, missing CUDA)
- Model-agnostic (falls back to plain prompt if no chat template)
"""

import logging
import time
from typing import Any, Dict, Union

import torch
from transformers import (
    AutoModelForCausalLM,
    AutoTokenizer,
    BitsAndBytesConfig
)

logger = logging.getLogger(__name__)

DEVICE_CUDA = "cuda"
DEVICE_CPU = "cpu"
DEVICE_MAP_AUTO = "auto"

DEFAULT_SYSTEM_PROMPT = (
    "You are an expert medical assistant AI with extensive clinical knowledge and a "
    "strong focus on patient safety. You help doctors by providing comprehensive medical "
    "documentation and practical clinical guidance. Always prioritize patient safety by "
    "including appropriate warnings, contraindications, maximum dosing limits, and "
    "emergency instructions."
)


class HuggingFaceClient:
    """Wrapper for HuggingFace causal LM inference"""

    def __init__(
        self,
        model_name: str,
        load_in_4bit: bool = True,
        device: str = DEVICE_CUDA,
        system_prompt: str = DEFAULT_SYSTEM_PROMPT
    ) -> None:
        """
        Initialize model and tokenizer

        Args:
            model_name: HuggingFace model identifier
            load_in_4bit: Use 4-bit quantization (CUDA only)
            device: Device to use ("cuda" or "cpu")
            system_prompt: System turn prepended to every prompt

        Raises:
            RuntimeError: If CUDA requested but not available
        """
        self.model_name = model_name
        self.device = device
        self.system_prompt = system_prompt
        self.model = None
        self.tokenizer = None

        if device == DEVICE_CUDA and not torch.cuda.is_available():
            raise RuntimeError("CUDA requested but not available. Check nvidia-smi.")

        logger.info(f"Loading model: {model_name} (device={device}, 4bit={load_in_4bit})")

        quantization_config = None
        if load_in_4bit and device == DEVICE_CUDA:
            quantization_config = BitsAndBytesConfig(
                load_in_4bit=True,
                bnb_4bit_quant_type="nf4",
                bnb_4bit_compute_dtype=torch.bfloat16,
                bnb_4bit_use_double_quant=True
            )

        try:
            self.tokenizer = AutoTokenizer.from_pretrained(model_name)
            if self.tokenizer.pad_token is None and self.tokenizer.eos_token is not None:
                self.tokenizer.pad_token = self.tokenizer.eos_token
        except Exception as e:
            logger.error(f"Failed to load tokenizer: {e}")
            raise

        try:
            self.model = AutoModelForCausalLM.from_pretrained(
                model_name,
                quantization_config=quantization_config,
                device_map=DEVICE_MAP_AUTO if device == DEVICE_CUDA else None,
                torch_dtype=torch.bfloat16 if device == DEVICE_CUDA else torch.float32
            )
        except torch.cuda.OutOfMemoryError:
            logger.error("CUDA Out of Memory during model loading")
            raise
        except Exception as e:
            logger.error(f"Failed to load model: {e}")
            raise

        self.model.eval()
        logger.info("HuggingFace client initialized successfully")

    def is_loaded(self) -> bool:
        return self.model is not None and self.tokenizer is not None

    def _format_prompt(self, prompt: str) -> str:
        """Wrap prompt in the model's chat template when it has one"""
        if not getattr(self.tokenizer, "chat_template", None):
            return f"{self.system_prompt}\n\n{prompt}"

        messages = [
            {"role": "system", "content": self.system_prompt},
            {"role": "user", "content": prompt},
        ]
        try:
            return self.tokenizer.apply_chat_template(
                messages, tokenize=False, add_generation_prompt=True
            )
        except Exception:
            # Some templates (e.g. Mistral) reject a system role
            merged = [{"role": "user", "content": f"{self.system_prompt}\n\n{prompt}"}]
            return self.tokenizer.apply_chat_template(
                merged, tokenize=False, add_generation_prompt=True
            )

    def generate(
        self,
        prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.2,
        return_diagnostics: bool = False
    ) -> Union[str, Dict[str, Any]]:
        """
        Generate text completion from prompt

        Returns:
            str: Generated text (if return_diagnostics=False)
            dict: {'text': str, 'diagnostics': {...}} (if return_diagnostics=True)

        Raises:
            RuntimeError: If model not loaded
            torch.cuda.OutOfMemoryError: If GPU runs out of memory
        """
        if not self.is_loaded():
            raise RuntimeError("Model not loaded")

        start_time = time.time()

        inputs = self.tokenizer(self._format_prompt(prompt), return_tensors="pt")
        if self.device == DEVICE_CUDA:
            inputs = inputs.to(DEVICE_CUDA)
        prompt_tokens = inputs.input_ids.shape[1]

        try:
            with torch.no_grad():
                outputs = self.model.generate(
                    inputs.input_ids,
                    attention_mask=inputs.attention_mask,
                    max_new_tokens=max_tokens,
                    temperature=temperature if temperature > 0 else None,
                    do_sample=temperature > 0,
                    pad_token_id=self.tokenizer.pad_token_id
                )
        except torch.cuda.OutOfMemoryError:
            logger.error(f"CUDA OOM during generation (prompt tokens: {prompt_tokens})")
            raise

        generated_ids = outputs[0][prompt_tokens:]
        generated_text = self.tokenizer.decode(generated_ids, skip_special_tokens=True)

        if return_diagnostics:
            return {
                "text": generated_text,
                "diagnostics": {
                    "prompt_tokens": prompt_tokens,
                    "completion_tokens": len(generated_ids),
                    "latency_ms": (time.time() - start_time) * 1000,
                }
            }
        return generated_text

    def generate_json(
        self,
        prompt: str,
        max_tokens: int = 1024,
        temperature: float = 0.0
    ) -> str:
        """
        Generate a JSON object as text (repaired, not parsed).

        Caller must json.loads() the result.
        """
        text = self.generate(prompt=prompt, max_tokens=max_tokens, temperature=temperature)
        return repair_json(text)

    def get_model_info(self) -> Dict[str, Any]:
        info = {
            "model_name": self.model_name,
            "device": self.device,
            "is_loaded": self.is_loaded(),
        }
        if self.device == DEVICE_CUDA and torch.cuda.is_available():
            info["gpu_memory_allocated_gb"] = torch.cuda.memory_allocated() / 1e9
        return info


def repair_json(text: str) -> str:
    """
    Strip markdown fences and surrounding prose from a JSON object.

    Only handles dict output. Brace balancing is naive (ignores braces
    inside strings).
    """
    text = text.strip()
    if text.startswith("```json"):
        text = text[7:]
    if text.startswith("```"):
        text = text[3:]
    if text.endswith("```"):
        text = text[:-3]
    text = text.strip()

    first_brace = text.find('{')
    last_brace = text.rfind('}')
    if first_brace == -1:
        logger.warning("No braces found in JSON repair")
        return text

    text = text[first_brace:last_brace + 1] if last_brace > first_brace else text[first_brace:]

    missing = text.count('{') - text.count('}')
    if missing > 0:
        text += '}' * missing
        logger.debug(f"Added {missing} closing braces")

    return text
