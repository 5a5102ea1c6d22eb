"""
Configuration for the Manim Orchestrator API.
Contains the environment-driven settings and the prompt engineering templates.
"""

from functools import lru_cache
from typing import List, Optional

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

load_dotenv()

# --- Constants ---
JWT_ALGORITHM = "HS256"
JWT_ISSUER = "manim-orchestrator-api"
CALLBACK_ROUTE = "/api/projects/render-callback"
RENDER_TIMEOUT_SECONDS = 10
MERGE_TIMEOUT_SECONDS = 60
LLM_TIMEOUT_SECONDS = 180


class Settings(BaseSettings):
    """Application settings, read from the environment and `.env`."""

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=False, extra="ignore")

    database_url: str = "sqlite:///./manim_orchestrator.db"
    host: str = "127.0.0.1"
    port: int = 8080
    public_base_url: Optional[str] = None

    jwt_secret: str = Field(..., min_length=1)
    jwt_expires_hours: int = Field(default=24, ge=1)

    llm_provider: str = "ollama"  # ollama | gemini
    ollama_api_url: str = "http://localhost:11434/api/chat"
    ollama_model: str = "codellama:7b"
    gemini_api_key: Optional[str] = None
    gemini_model: str = "gemini-1.5-flash"

    manim_renderer_url: str = ""
    r2_internal_domain: Optional[str] = None
    r2_public_domain: Optional[str] = None

    cors_origins: List[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]
    log_level: str = "INFO"

    def callback_url(self, render_version: Optional[int] = None) -> str:
        """URL the renderer posts its result back to."""
        if self.public_base_url:
            base = self.public_base_url.rstrip("/")
        else:
            host = self.host
            # The renderer usually runs in Docker and cannot reach the loopback of this host.
            if host in ("127.0.0.1", "0.0.0.0"):
                host = "host.docker.internal"
            base = f"http://{host}:{self.port}"
        if render_version is None:
            return f"{base}{CALLBACK_ROUTE}"
        return f"{base}{CALLBACK_ROUTE}?render_version={render_version}"


@lru_cache()
def get_settings() -> Settings:
    return Settings()


# --- Prompt Engineering Section ---

SYSTEM_PROMPT = """You are an expert Manim code generator. You generate ONLY Python code for Manim Community Edition.

VERY IMPORTANT RULES:
1.  Your response MUST BE ONLY valid Python code wrapped in a single ```python code block.
2.  The main class MUST inherit from `Scene`.
3.  Use `self.play()` for animations and `self.wait()` for pauses.
4.  NEVER use `GrowArrow`. Use `Create(Arrow(...))` instead.
5.  NEVER use `FunctionGraph`. Use `Axes` and `axes.plot()` instead.
6.  For complex or unclear requests, output a simple default animation.
7.  End every scene with `self.wait(1)`.
"""

EXAMPLE_1_USER = "Animate a blue circle fading in."
EXAMPLE_1_ASSISTANT = """```python
from manim import *

class MyAnimation(Scene):
    def construct(self):
        circle = Circle(color=BLUE)
        self.play(FadeIn(circle))
        self.wait(1)
```"""

EXAMPLE_2_USER = "Show a blue circle turning into a red square."
EXAMPLE_2_ASSISTANT = """```python
from manim import *

class CircleToSquare(Scene):
    def construct(self):
        circle = Circle(color=BLUE)
        square = Square(color=RED)
        self.play(Create(circle), run_time=1)
        self.play(Transform(circle, square), run_time=1)
        self.wait(1)
```"""

FEW_SHOT_EXAMPLES = [
    (EXAMPLE_1_USER, EXAMPLE_1_ASSISTANT),
    (EXAMPLE_2_USER, EXAMPLE_2_ASSISTANT),
]

GEMINI_PROMPT_TEMPLATE = """Generate Manim Python code based on this request.

Instructions:
- Provide ONLY valid, runnable Manim Python code in a single ```python code block.
- No explanations, external comments, or extra text.
- Code must be self-contained in a class inheriting from 'Scene'.
- Use 'self.play()' for animations and 'self.wait()' for pauses.
- For complex/unclear requests, output a simple default animation.

Example Input: "{example_user}"
Example Output:
{example_assistant}

User request: "{prompt}"
"""
