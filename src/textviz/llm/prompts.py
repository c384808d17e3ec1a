"""Prompt templates for the two generation stages.

Stage 1 (instructions) asks for a JSON :class:`InstructionDocument`; stage 2
(visualization) asks for one self-contained HTML page. The page must honour
the playback contract below, which is what the playback host and recorder
rely on: a single ``canvas#animationCanvas``, four global entry points and a
``message`` listener for the same four names.
"""

from __future__ import annotations

import json
from collections.abc import Mapping
from typing import Any

#: Global functions every generated page exposes, in relay order.
ENTRY_POINTS: tuple[str, ...] = ("stepForward", "stepBackward", "resetAnimation", "playAnimation")

#: CSS selector of the single drawing surface inside a generated page.
CANVAS_SELECTOR = "canvas#animationCanvas"

INSTRUCTIONS_SYSTEM_PROMPT = """You are an expert animation instruction generator. Turn the user's description into detailed, structured animation instructions.

Respond with a single JSON object of this shape:
{
  "scene": {
    "title": "Short title of the animation",
    "description": "What the animation demonstrates",
    "canvas": { "width": 800, "height": 600, "backgroundColor": "#ffffff" }
  },
  "objects": [
    {
      "id": "object1",
      "type": "shape|text|graph|chart|bar|arrow|circle|square|line",
      "properties": {
        "position": { "x": 100, "y": 100 },
        "size": { "width": 50, "height": 50 },
        "color": "#3b82f6",
        "label": "Optional label"
      },
      "initialState": {}
    }
  ],
  "animations": [
    {
      "id": "anim1",
      "targetObjectId": "object1",
      "type": "move|grow|fade|rotate|colorChange|morph",
      "duration": 2000,
      "delay": 0,
      "easing": "easeInOut",
      "properties": { "from": {}, "to": {} },
      "description": "What this animation does"
    }
  ],
  "timeline": [
    { "time": 0, "action": "What happens at this moment", "animationIds": ["anim1"] }
  ],
  "controls": {
    "playPause": true,
    "reset": true,
    "speedControl": true,
    "stepForward": false,
    "stepBackward": false
  },
  "narrativeGuide": {
    "introduction": "What the animation will show",
    "steps": [
      {
        "timestamp": 0,
        "timeInSeconds": 0,
        "text": "Narration for this moment",
        "highlight": "Concept or object to focus on"
      }
    ],
    "conclusion": "Summary of what was shown"
  }
}

GUIDELINES:
- Algorithms (sorting, searching): discrete steps with clear state transitions.
- Math: shapes, their relationships and how they transform.
- Graphs and plots: data points, axes and how the curve is drawn.
- Physics: objects, forces and how they interact over time.
- Use descriptive ids and explicit properties; a developer must be able to implement every animation.
- All durations, delays and timestamps are in milliseconds. Aim for 20-30 seconds in total so narration is not rushed.

NARRATIVE GUIDE:
- One step per significant moment, spread across the whole animation.
- timestamp in milliseconds, matching the timeline; timeInSeconds is the same value in seconds.
- Timestamps never decrease from one step to the next.
- Narration is clear and educational, paced at roughly 120-140 words per minute; a few short sentences per step.
- The introduction sets context and the conclusion summarizes what was learned.
- highlight names the visual element being discussed.

Return ONLY valid JSON. No markdown, no code fences, no commentary."""

_PLAYBACK_REQUIREMENTS = """ANIMATION REQUIREMENTS:
- The animation lasts at least 15-20 seconds (450-600 frames at 30 FPS) so narration is comfortable.
- Frame-based animation at 30 FPS, driven by requestAnimationFrame: totalFrames = durationSeconds * 30.
- Slow, smooth transitions; never make instant changes. Show each algorithm step clearly.
- Running longer than requested is fine; clarity comes first.

CONTROLS (OUTSIDE THE CANVAS, in a separate <div> below it):
- Play/Pause toggle, Reset (restart from the beginning and play), speed slider (0.5x to 2x), step forward/backward buttons.

PLAYBACK CONTRACT (required exactly as written):
- Exactly one canvas: <canvas id="animationCanvas"></canvas>. It is the only element that gets recorded.
- A global state object: let animState = { isPlaying: true, speed: 1, currentFrame: 0, totalFrames: 600 };
- Global zero-argument functions on window: window.stepForward, window.stepBackward, window.resetAnimation, window.playAnimation.
- A listener: window.addEventListener('message', (e) => { ... }) that calls the matching function for
  e.data.type === 'stepForward' | 'stepBackward' | 'resetAnimation' | 'playAnimation'.
- The canvas must support canvas.captureStream(30).

TECHNICAL REQUIREMENTS:
- A complete HTML file starting with <!DOCTYPE html>, with <html>, <head> and <body>.
- Native Canvas 2D API only (no D3.js, no p5.js, no external libraries or network requests).
- Canvas size 800x600 or 1000x700; clear it every frame with a white fill.
- Center all drawing: translate to (canvas.width / 2, canvas.height / 2) inside ctx.save()/ctx.restore().
- Labels and titles are drawn on the canvas with fillText; no frame counters or debug text on the canvas.
- The body centers the content with flexbox (align-items: center; justify-content: center; min-height: 100vh).
- SUBTITLES: draw the current narration at the bottom of the canvas: background
  ctx.fillStyle = 'rgba(255, 255, 255, 0.8)'; ctx.fillRect(0, canvas.height - 60, canvas.width, 60);
  then ctx.font = '20px Arial'; ctx.fillStyle = '#000000'; ctx.textAlign = 'center' at y = canvas.height - 40.
  Subtitles follow the current frame and the speed multiplier.

EXAMPLES:
- Bubble sort: bars with fillRect, comparisons and swaps animated frame by frame.
- Pythagorean theorem: squares that grow frame by frame.
- Sine wave: a curve drawn point by point with lineTo.

Return ONLY the complete HTML code. No markdown backticks, no explanations."""


def build_instructions_messages(prompt: str) -> list[dict[str, str]]:
    """Chat messages for stage 1 (streamed instruction JSON)."""
    return [
        {"role": "system", "content": INSTRUCTIONS_SYSTEM_PROMPT},
        {
            "role": "user",
            "content": f"Convert this animation request into detailed instructions: {prompt.strip()}",
        },
    ]


def build_visualization_prompt(
    *,
    instructions: str | None = None,
    prompt: str | None = None,
    narrative_guide: Mapping[str, Any] | None = None,
) -> str:
    """Compose the stage 2 prompt.

    ``instructions`` win over ``prompt``. The narrative guide is only used in
    the instructions variant, where it drives the subtitles.
    """
    if instructions:
        parts = [
            "You are an expert visualization code generator. Generate a complete, "
            "self-contained HTML page based on these detailed animation instructions:",
            "",
            instructions.strip(),
        ]
        if narrative_guide:
            parts += [
                "",
                "NARRATIVE GUIDE FOR SUBTITLES:",
                json.dumps(dict(narrative_guide), indent=2, ensure_ascii=False),
                "",
                "Use narrativeGuide.steps for synchronized subtitles. Each step has a timestamp "
                "in milliseconds and a text; show the step whose timestamp was reached most "
                "recently for the current frame.",
            ]
        parts += ["", _PLAYBACK_REQUIREMENTS]
        return "\n".join(parts)

    return (
        "You are an expert visualization code generator. Generate a complete, "
        f"self-contained HTML page that visualizes: {(prompt or '').strip()}\n\n"
        f"{_PLAYBACK_REQUIREMENTS}"
    )


def build_visualization_messages(
    *,
    instructions: str | None = None,
    prompt: str | None = None,
    narrative_guide: Mapping[str, Any] | None = None,
) -> list[dict[str, str]]:
    """Single-user-turn message list for stage 2."""
    content = build_visualization_prompt(
        instructions=instructions, prompt=prompt, narrative_guide=narrative_guide
    )
    return [{"role": "user", "content": content}]


__all__ = [
    "ENTRY_POINTS",
    "CANVAS_SELECTOR",
    "INSTRUCTIONS_SYSTEM_PROMPT",
    "build_instructions_messages",
    "build_visualization_prompt",
    "build_visualization_messages",
]
