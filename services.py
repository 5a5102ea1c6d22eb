"""
Service classes for the Manim Orchestrator API.
Contains CodeValidator, LLMService, RendererClient and the storage URL rewriting helper.
"""

import ast
import logging
import re
from typing import List, NamedTuple, Optional
from urllib.parse import urlparse

import requests

from config import (
    FEW_SHOT_EXAMPLES,
    GEMINI_PROMPT_TEMPLATE,
    LLM_TIMEOUT_SECONDS,
    MERGE_TIMEOUT_SECONDS,
    RENDER_TIMEOUT_SECONDS,
    SYSTEM_PROMPT,
    Settings,
)


class LLMError(Exception):
    """The LLM could not produce usable Manim code."""


class CodeGenerationError(LLMError):
    """The LLM answered, but the answer is not a runnable Manim scene."""


class RendererError(Exception):
    """Base class for failures talking to the Manim renderer."""


class RendererRequestError(RendererError):
    """The outbound request could not be built (bad URL, unserialisable body)."""


class RendererUnavailableError(RendererError):
    """The renderer could not be reached or did not answer in time."""


class RendererResponseError(RendererError):
    """The renderer answered with an error status or an unreadable body."""

    def __init__(self, status_code: int, message: str, body: str = ""):
        super().__init__(message)
        self.status_code = status_code
        self.message = message
        self.body = body


class CodeValidator:
    """Extracts and sanity-checks the Manim code inside an LLM answer."""

    _CODE_BLOCK = re.compile(r"```(?:python|py)?[ \t]*\n(.*?)```", re.DOTALL)

    def __init__(self, raw_code: str):
        self.code = raw_code or ""
        self.fixes_applied = []

    def _strip_markdown(self):
        match = self._CODE_BLOCK.search(self.code)
        if match:
            self.code = match.group(1)
        self.code = re.sub(r"```(?:python)?\n?|```", "", self.code).strip()

    def _apply_regex_fixes(self):
        # GrowArrow is deprecated; Create works on any mobject
        if "GrowArrow" in self.code:
            self.code = self.code.replace("GrowArrow", "Create")
            self.fixes_applied.append("Replaced GrowArrow with Create")

        # Remove hallucinated self.create() calls
        if "self.create(" in self.code:
            self.code = re.sub(r"self\.create\((.*?)\)", r"\1", self.code)
            self.fixes_applied.append("Removed hallucinated self.create()")

        # {var.1f} -> {var:.1f}
        if "{" in self.code and "f}" in self.code:
            self.code, n = re.subn(r"\{(\w+)\.(\d+)f\}", r"{\1:.\2f}", self.code)
            if n:
                self.fixes_applied.append("Fixed f-string format")

    def _auto_inject_imports(self):
        if "from manim import *" not in self.code:
            self.code = "from manim import *\n" + self.code
            self.fixes_applied.append("Auto-injected 'from manim import *'")

        if "np." in self.code and "import numpy as np" not in self.code:
            self.code = self.code.replace("from manim import *", "from manim import *\nimport numpy as np", 1)
            self.fixes_applied.append("Auto-injected 'import numpy as np'")

    def _validate_syntax(self):
        try:
            ast.parse(self.code)
        except SyntaxError as e:
            error_msg = f"Line {e.lineno}: {e.msg}"
            logging.error(f"❌ Generated code has a Syntax Error: {error_msg}")
            logging.debug(f"--- FAILED CODE ---\n{self.code}\n---")
            raise CodeGenerationError(f"AI generated invalid Python code: {error_msg}")

    def scene_name(self) -> str:
        match = re.search(r"class\s+(\w+)\s*\(\s*\w*Scene\s*\):", self.code)
        if match:
            return match.group(1)
        raise CodeGenerationError("Could not detect Scene class name in the generated code.")

    def run(self) -> str:
        if not self.code.strip():
            raise CodeGenerationError("AI returned an empty response.")

        self._strip_markdown()
        if not self.code:
            raise CodeGenerationError("AI returned an empty code block.")
        self._apply_regex_fixes()
        self._auto_inject_imports()
        self._validate_syntax()
        self.scene_name()

        if self.fixes_applied:
            logging.warning(f"🔧 AUTO-FIXES APPLIED: {', '.join(self.fixes_applied)}")

        return self.code


class LLMService:
    """Handles LLM communication for Manim code generation."""

    def __init__(self, settings: Settings, session: Optional[requests.Session] = None):
        self.settings = settings
        self.session = session or requests.Session()

    def close(self):
        self.session.close()

    def generate_manim_code(self, prompt: str) -> str:
        """Ask the configured model for a scene and return the cleaned code."""
        provider = self.settings.llm_provider.lower()
        try:
            if provider == "gemini":
                raw_code = self._ask_gemini(prompt)
            elif provider == "ollama":
                raw_code = self._ask_ollama(prompt)
            else:
                raise LLMError(f"Unknown LLM provider '{self.settings.llm_provider}'")
        except requests.RequestException as e:
            raise LLMError(f"Could not reach the {provider} model: {e}") from e
        except ValueError as e:
            # Body was not JSON
            raise LLMError(f"Unreadable response from the {provider} model: {e}") from e

        code = CodeValidator(raw_code).run()
        logging.info(f"Manim code generated. Length: {len(code)}")
        return code

    def _ask_ollama(self, prompt: str) -> str:
        logging.info(f"📝 Sending prompt to {self.settings.ollama_model}: '{prompt}'")
        messages = [{"role": "system", "content": SYSTEM_PROMPT}]
        for user_msg, assistant_msg in FEW_SHOT_EXAMPLES:
            messages.append({"role": "user", "content": user_msg})
            messages.append({"role": "assistant", "content": assistant_msg})
        messages.append({"role": "user", "content": prompt})

        payload = {
            "model": self.settings.ollama_model,
            "messages": messages,
            "stream": False,
            "options": {"temperature": 0.2, "top_p": 0.95},
        }
        response = self.session.post(self.settings.ollama_api_url, json=payload, timeout=LLM_TIMEOUT_SECONDS)
        response.raise_for_status()

        body = response.json()
        message = body.get("message") if isinstance(body, dict) else None
        content = message.get("content", "") if isinstance(message, dict) else None
        if not isinstance(content, str):
            logging.warning(f"Ollama returned an unexpected response: {body!r}")
            raise LLMError("Ollama returned no valid content for the prompt")
        return content

    def _ask_gemini(self, prompt: str) -> str:
        if not self.settings.gemini_api_key:
            raise LLMError("Gemini API key is not provided")
        logging.info(f"📝 Sending prompt to {self.settings.gemini_model}: '{prompt}'")

        example_user, example_assistant = FEW_SHOT_EXAMPLES[0]
        full_prompt = GEMINI_PROMPT_TEMPLATE.format(
            example_user=example_user, example_assistant=example_assistant, prompt=prompt
        )
        url = (
            "https://generativelanguage.googleapis.com/v1beta/models/"
            f"{self.settings.gemini_model}:generateContent"
        )
        response = self.session.post(
            url,
            params={"key": self.settings.gemini_api_key},
            json={"contents": [{"parts": [{"text": full_prompt}]}]},
            timeout=LLM_TIMEOUT_SECONDS,
        )
        response.raise_for_status()

        body = response.json()
        candidates = body.get("candidates") if isinstance(body, dict) else None
        first = candidates[0] if isinstance(candidates, list) and candidates else None
        content = first.get("content") if isinstance(first, dict) else None
        parts = content.get("parts") if isinstance(content, dict) else None
        part = parts[0] if isinstance(parts, list) and parts else None
        text = part.get("text") if isinstance(part, dict) else None
        if not isinstance(text, str):
            logging.warning("Gemini returned no candidates or empty content.")
            raise LLMError("Gemini returned no valid content for the prompt")
        return text


class RenderSubmission(NamedTuple):
    status_code: int
    error: str


class RendererClient:
    """Talks to the external Manim renderer service."""

    def __init__(self, base_url: str, session: Optional[requests.Session] = None):
        self.base_url = (base_url or "").rstrip("/")
        self.session = session or requests.Session()

    def close(self):
        self.session.close()

    def _prepare(self, path: str, payload: dict) -> requests.PreparedRequest:
        try:
            request = requests.Request("POST", f"{self.base_url}{path}", json=payload)
            return self.session.prepare_request(request)
        except (requests.exceptions.InvalidURL, requests.exceptions.MissingSchema,
                requests.exceptions.InvalidSchema, TypeError, ValueError) as e:
            raise RendererRequestError(f"Failed to create request to renderer: {e}") from e

    def _send(self, prepared: requests.PreparedRequest, timeout: int) -> requests.Response:
        try:
            return self.session.send(prepared, timeout=timeout)
        except requests.RequestException as e:
            raise RendererUnavailableError(f"Failed to send request to renderer {prepared.url}: {e}") from e

    def submit_render(self, project_id: str, script_content: str, callback_url: str,
                      render_version: Optional[int]) -> RenderSubmission:
        """Hand a script to the renderer. It answers 202 when the job was queued."""
        prepared = self._prepare("/render", {
            "project_id": project_id,
            "script_content": script_content,
            "callback_url": callback_url,
            "render_version": render_version,
        })
        response = self._send(prepared, RENDER_TIMEOUT_SECONDS)

        error = ""
        if response.status_code != requests.codes.accepted:
            error = _error_message(response) or "Unknown error from renderer."
        return RenderSubmission(response.status_code, error)

    def merge_videos(self, ids: List[str]) -> dict:
        """Merge rendered videos synchronously; returns the renderer's JSON body."""
        prepared = self._prepare("/merge_videos", {"ids": ids})
        logging.info(f"Forwarding merge request to renderer at {prepared.url} with IDs: {ids}")
        response = self._send(prepared, MERGE_TIMEOUT_SECONDS)

        if response.status_code != requests.codes.ok:
            logging.error(f"Renderer returned status {response.status_code} with body: {response.text}")
            raise RendererResponseError(
                response.status_code,
                _error_message(response) or "Video merging service reported an error.",
                response.text,
            )
        try:
            body = response.json()
        except ValueError as e:
            raise RendererResponseError(
                response.status_code, "Error parsing successful merge response from renderer.", response.text
            ) from e
        if not isinstance(body, dict):
            raise RendererResponseError(
                response.status_code, "Error parsing successful merge response from renderer.", response.text
            )
        return body


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return ""
    if isinstance(body, dict):
        return str(body.get("error") or "")
    return ""


def rewrite_storage_url(url: str, internal_domain: Optional[str], public_domain: Optional[str]) -> str:
    """
    Swap the internal storage origin of `url` for the public one.
    Only rewrites when the URL's scheme://host equals `internal_domain`.
    """
    if not url or not internal_domain or not public_domain:
        return url

    parsed = urlparse(url)
    if not parsed.scheme or not parsed.netloc:
        logging.warning(f"Could not parse video URL '{url}'. Skipping transformation.")
        return url

    internal = internal_domain.rstrip("/")
    public = public_domain.rstrip("/")
    if f"{parsed.scheme}://{parsed.netloc}".lower() != internal.lower():
        return url
    return f"{public}{parsed.path}"
