"""Turn a RAGConfig plus per-call QueryOptions into argv and environment.

Both functions are pure: identical inputs give identical outputs, and the
environment is rebuilt from scratch on every call.
"""
import os
import sys
from typing import Dict, List, Mapping, Optional

from .config import QueryOptions, RAGConfig

WINDOWS_UTF8_ENV = {
    "PYTHONIOENCODING": "utf-8",
    "LANG": "zh_CN.UTF-8",
    "LC_ALL": "zh_CN.UTF-8",
    "CHCP": "65001",
}

_ROLE_MODEL_FLAGS = (
    ("recall_model", "--recall_model"),
    ("chunk_model", "--chunk_model"),
    ("qa_model", "--qa_model"),
    ("emb_model", "--emb_model"),
    ("agentic_model", "--agentic_model"),
    ("context_prune_model", "--context_prune_model"),
)


def _pick(override, default):
    return default if override is None else override


def _decimal(value: float) -> str:
    return repr(float(value))


def build_command(config: RAGConfig, options: Optional[QueryOptions] = None) -> List[str]:
    opts = options or QueryOptions()
    cmd = [config.command_path, "run", "--doc_dir", config.doc_dir]

    model = opts.model or config.model
    if model:
        cmd += ["--model", model]

    model_file = opts.model_file or config.model_file
    if model_file:
        cmd += ["--model_file", model_file]

    cmd += ["--output_format", opts.output_format or "text"]

    if _pick(opts.agentic, config.agentic):
        cmd.append("--agentic")

    product_mode = opts.product_mode or config.product_mode
    if product_mode == "pro":
        cmd.append("--pro")
    elif product_mode == "lite":
        cmd.append("--lite")

    cmd += [
        "--rag_context_window_limit",
        str(int(_pick(opts.rag_context_window_limit, config.rag_context_window_limit))),
        "--full_text_ratio",
        _decimal(_pick(opts.full_text_ratio, config.full_text_ratio)),
        "--segment_ratio",
        _decimal(_pick(opts.segment_ratio, config.segment_ratio)),
        "--rag_doc_filter_relevance",
        str(int(_pick(opts.rag_doc_filter_relevance, config.rag_doc_filter_relevance))),
    ]

    if config.enable_hybrid_index:
        cmd.append("--enable_hybrid_index")
    if config.disable_auto_window:
        cmd.append("--disable_auto_window")
    if config.disable_segment_reorder:
        cmd.append("--disable_segment_reorder")

    for attr, flag in _ROLE_MODEL_FLAGS:
        value = getattr(config, attr)
        if value:
            cmd += [flag, value]
    if config.tokenizer_path:
        cmd += ["--tokenizer_path", config.tokenizer_path]
    if config.required_exts:
        cmd += ["--required_exts", config.required_exts]
    if config.ray_address:
        cmd += ["--ray_address", config.ray_address]

    return cmd


def merge_env(*layers: Optional[Mapping[str, str]]) -> Dict[str, str]:
    env: Dict[str, str] = {}
    for layer in layers:
        if layer:
            env.update(layer)
    return env


def build_env(
    config: RAGConfig,
    options: Optional[QueryOptions] = None,
    base: Optional[Mapping[str, str]] = None,
    platform: Optional[str] = None,
) -> Dict[str, str]:
    # precedence, low to high: inherited, utf-8 overlay, config.envs, options.envs
    inherited = os.environ if base is None else base
    platform = platform or sys.platform
    utf8 = WINDOWS_UTF8_ENV if config.windows_utf8_env and platform == "win32" else None
    per_call = options.envs if options is not None else None
    return merge_env(inherited, utf8, config.envs, per_call)


def resolve_timeout(config: RAGConfig, options: Optional[QueryOptions] = None) -> int:
    if options is not None and options.timeout is not None:
        return options.timeout
    return config.timeout
