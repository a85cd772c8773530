import argparse, json, logging, sys
from dataclasses import asdict
from typing import Any, Dict, List, Optional

from .client import RAGClient
from .config import OUTPUT_FORMATS, PRODUCT_MODES, QueryOptions, load_env_defaults
from .errors import ExecutionError, RAGError, ValidationError
from .tokens import TokenCountOptions, count_tokens

def _emit(obj: Any, as_json: bool) -> None:
    print(json.dumps(obj, ensure_ascii=False) if as_json else json.dumps(obj, indent=2, ensure_ascii=False))

def _error_payload(action: str, e: RAGError) -> Dict[str, Any]:
    payload: Dict[str, Any] = {"ok": False, "action": action, "error": str(e), "kind": type(e).__name__}
    if isinstance(e, ExecutionError):
        payload.update(exit_code=e.exit_code, timed_out=e.timed_out)
    return payload

def _parse_envs(pairs: Optional[List[str]]) -> Optional[Dict[str, str]]:
    if not pairs:
        return None
    envs: Dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        if not sep or not key:
            raise ValidationError(f"--env expects KEY=VALUE, got {pair!r}")
        envs[key] = value
    return envs

def _client_parser(p: argparse.ArgumentParser):
    p.add_argument("--doc-dir", dest="doc_dir", default=".", help="Document directory (default: cwd)")
    p.add_argument("--command", dest="command_path", default=None, help="auto-coder.rag executable")
    p.add_argument("--json", dest="as_json", action="store_true", help="Compact JSON output")

def _client(args: argparse.Namespace) -> RAGClient:
    return RAGClient(load_env_defaults(args.doc_dir).with_overrides(command_path=args.command_path))

def _read_question(raw: str) -> str:
    return sys.stdin.read() if raw == "-" else raw

def cmd_query(args: argparse.Namespace) -> int:
    try:
        client = _client(args)
        options = QueryOptions(
            output_format=args.output_format, model=args.model, model_file=args.model_file,
            agentic=True if args.agentic else None, product_mode=args.product_mode,
            timeout=args.timeout, envs=_parse_envs(args.env),
        )
        question = _read_question(args.question)
        if args.collect:
            resp = client.query_collect_messages(question, options)
            _emit({"ok": True, "action": "query", **asdict(resp)}, args.as_json); return 0
        if args.messages:
            with client.query_stream_messages(question, options) as stream:
                for message in stream:
                    print(message.to_json(), flush=True)
                stream.raise_for_error()
            return 0
        if args.stream:
            with client.query_stream(question, options) as stream:
                for line in stream:
                    print(line, flush=True)
                stream.raise_for_error()
            return 0
        answer = client.query(question, options)
        if args.as_json:
            _emit({"ok": True, "action": "query", "answer": answer}, True)
        else:
            print(answer)
        return 0
    except RAGError as e:
        _emit(_error_payload("query", e), args.as_json); return 1

def cmd_count(args: argparse.Namespace) -> int:
    opts = TokenCountOptions(tokenizer_path=args.tokenizer_path, timeout=args.timeout)
    if args.command_path:
        opts.command_path = args.command_path
    try:
        result = count_tokens(args.file, opts)
        payload = asdict(result); payload.pop("raw_output")
        _emit({"ok": True, "action": "count", **payload}, args.as_json); return 0
    except RAGError as e:
        _emit(_error_payload("count", e), args.as_json); return 1

def cmd_version(args: argparse.Namespace) -> int:
    try:
        _emit({"ok": True, "action": "version", "version": _client(args).get_version()}, args.as_json); return 0
    except RAGError as e:
        _emit(_error_payload("version", e), args.as_json); return 1

def cmd_check(args: argparse.Namespace) -> int:
    try:
        available = _client(args).check_availability()
    except RAGError as e:
        _emit(_error_payload("check", e), args.as_json); return 1
    _emit({"ok": available, "action": "check", "available": available}, args.as_json)
    return 0 if available else 1

def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ragclient", description="Client for the auto-coder.rag CLI")
    p.add_argument("-v", "--verbose", action="store_true", help="Debug logging to stderr")
    sub = p.add_subparsers(dest="cmd", required=True)
    pq = sub.add_parser("query", help="Ask a question about the documents"); _client_parser(pq)
    pq.add_argument("question", help="Question text, or - to read it from stdin")
    pq.add_argument("--format", dest="output_format", choices=OUTPUT_FORMATS, default=None)
    pq.add_argument("--model", default=None)
    pq.add_argument("--model-file", dest="model_file", default=None)
    pq.add_argument("--agentic", action="store_true")
    pq.add_argument("--mode", dest="product_mode", choices=PRODUCT_MODES, default=None)
    pq.add_argument("--timeout", type=int, default=None, help="Seconds (overrides config)")
    pq.add_argument("--env", action="append", metavar="KEY=VALUE", help="Extra environment variable (repeatable)")
    mode = pq.add_mutually_exclusive_group()
    mode.add_argument("--stream", action="store_true", help="Print output lines as they arrive")
    mode.add_argument("--messages", action="store_true", help="Print pipeline events as JSON lines")
    mode.add_argument("--collect", action="store_true", help="Aggregate pipeline events into one response")
    pq.set_defaults(func=cmd_query)
    pc = sub.add_parser("count", help="Count tokens in a file")
    pc.add_argument("file"); pc.add_argument("--tokenizer-path", dest="tokenizer_path", default=None)
    pc.add_argument("--timeout", type=int, default=60)
    pc.add_argument("--command", dest="command_path", default=None)
    pc.add_argument("--json", dest="as_json", action="store_true")
    pc.set_defaults(func=cmd_count)
    pv = sub.add_parser("version", help="Show auto-coder.rag version"); _client_parser(pv); pv.set_defaults(func=cmd_version)
    pk = sub.add_parser("check", help="Check auto-coder.rag is installed"); _client_parser(pk); pk.set_defaults(func=cmd_check)
    return p

def main(argv=None) -> int:
    argv = argv if argv is not None else sys.argv[1:]
    parser = build_parser(); args = parser.parse_args(argv)
    logging.basicConfig(level=logging.DEBUG if args.verbose else logging.WARNING,
                        format="%(asctime)s %(levelname)s %(name)s: %(message)s", stream=sys.stderr)
    return args.func(args)

if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
