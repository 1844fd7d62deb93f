"""
Command-line and library entry points.

A run discovers rules, loads the config, collects TypeScript files, analyzes
each file (parse, build the per-file type resolver, run the rules, apply
severity overrides, the per-file cap and suppression comments) and renders
the findings as protocol v1 JSON or as a human-readable report.
"""

import argparse
import concurrent.futures
import json
import logging
import os
import sys
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from .config import EngineConfig, find_config_file, load_config
from .registry import discover_rules, get_adapter, get_enabled_rules, get_rule_ids, register_adapter
from .schema import (
    ENGINE_VERSION, PROTOCOL_VERSION, findings_to_json, validate_rule_options, validate_runner_output,
)
from .suppressions import filter_suppressed_findings
from .syntax import SyntaxNode
from .type_resolver import DeclarationTypeResolver
from .types import Finding, Rule, RuleContext


logger = logging.getLogger(__name__)

LANGUAGE = "typescript"
DEFAULT_DISCOVERY_PACKAGES = ["awaitguard.rules"]
SEVERITY_ORDER = {"info": 0, "warn": 1, "error": 2}
SEVERITY_ICONS = {"info": "ℹ️", "warn": "⚠️", "error": "❌"}

EXIT_CLEAN = 0
EXIT_FINDINGS = 1
EXIT_CONFIG_ERROR = 2

_thread_state = threading.local()


@dataclass
class RunResult:
    """Outcome of analyzing a set of files."""
    findings: List[Finding]
    files: List[str]
    rules: List[Rule]
    metrics: Dict[str, float]

    def to_output(self, format_type: str = "json") -> str:
        return format_output(self.findings, len(self.files), len(self.rules), self.metrics,
                             format_type, _read_text_cache(self.files))


def setup_adapters() -> None:
    from .typescript_adapter import default_typescript_adapter
    register_adapter(default_typescript_adapter.language_id, default_typescript_adapter)


def _adapter_for_current_thread(language: str):
    """The registered adapter on the main thread, a private copy on worker threads."""
    adapter = get_adapter(language)
    if adapter is None or threading.current_thread() is threading.main_thread():
        return adapter

    per_thread = getattr(_thread_state, "adapters", None)
    if per_thread is None:
        per_thread = _thread_state.adapters = {}
    if language not in per_thread:
        per_thread[language] = type(adapter)()
    return per_thread[language]


def collect_files(paths: List[str], language: str, extensions: Optional[Tuple[str, ...]] = None) -> List[str]:
    """Files the language's adapter accepts under paths, optionally narrowed to extensions."""
    adapter = get_adapter(language)
    if adapter is None:
        logger.error("No adapter found for language '%s'", language)
        return []

    files = adapter.list_files(paths)
    if extensions:
        files = [f for f in files if f.endswith(extensions)]
    return files


def build_type_resolver(tree: Any, config: EngineConfig) -> DeclarationTypeResolver:
    root = SyntaxNode.from_tree(tree) if tree is not None else None
    return DeclarationTypeResolver(root, declarations=config.type_declarations)


def check_rule_configs(rules: List[Rule], config: EngineConfig) -> List[str]:
    """Schema errors in the configured options of the given rules."""
    errors = []
    for rule in rules:
        options = config.rule_configs.get(rule.meta.id)
        if options is not None:
            errors.extend(validate_rule_options(rule, options))
    return errors


def _keep(finding: Finding, config: EngineConfig, threshold: int) -> Optional[Finding]:
    override = config.rule_severities.get(finding.rule)
    if override and override != finding.severity:
        finding = finding._replace(severity=override)
    return finding if SEVERITY_ORDER.get(finding.severity, 0) >= threshold else None


def analyze_file(file_path: str, language: str, rules: List[Rule], config: EngineConfig,
                 content: Optional[str] = None) -> Tuple[List[Finding], float]:
    """
    Run rules over one file.

    Args:
        file_path: Reported on every finding; read from disk when content is None
        language: Adapter language id
        rules: Rules to run, in order
        config: Engine configuration
        content: Source text, if already in memory

    Returns:
        (findings, parse time in milliseconds). Unreadable or unparsable files
        give no findings; a failing rule is logged and skipped.
    """
    adapter = _adapter_for_current_thread(language)
    if adapter is None:
        return [], 0.0

    if content is None:
        try:
            with open(file_path, 'r', encoding='utf-8', errors='ignore') as f:
                content = f.read()
        except OSError as e:
            logger.warning("Failed to read %s: %s", file_path, e)
            return [], 0.0

    started = time.perf_counter()
    tree = adapter.parse(content, file_path=file_path)
    parse_ms = (time.perf_counter() - started) * 1000
    if tree is None:
        logger.warning("Failed to parse %s", file_path)
        return [], parse_ms

    ctx = RuleContext(
        file_path=file_path,
        text=content,
        tree=tree,
        adapter=adapter,
        type_resolver=build_type_resolver(tree, config),
    )

    threshold = SEVERITY_ORDER.get(config.severity_threshold, 0)
    limit = config.max_findings_per_file
    findings: List[Finding] = []
    for rule in rules:
        ctx.config = dict(config.rule_configs.get(rule.meta.id) or {})
        try:
            produced = list(rule.visit(ctx))
        except Exception as e:
            logger.warning("Rule '%s' failed on %s: %s", rule.meta.id, file_path, e)
            continue

        findings.extend(f for f in (_keep(p, config, threshold) for p in produced) if f is not None)
        if len(findings) >= limit:
            findings = findings[:limit]
            break

    findings = filter_suppressed_findings(findings, content)
    logger.debug("%s: %d findings", file_path, len(findings))
    return findings, parse_ms


def run_analysis(files: List[str], language: str, rules: List[Rule], config: EngineConfig,
                 jobs: int = 1) -> Tuple[List[Finding], float]:
    """Analyze files, on a thread pool when jobs > 1. Findings are returned in file order."""
    if jobs <= 1:
        results = [analyze_file(path, language, rules, config) for path in files]
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=jobs) as pool:
            futures = [pool.submit(analyze_file, path, language, rules, config) for path in files]
        results = []
        for path, future in zip(files, futures):
            try:
                results.append(future.result())
            except Exception as e:
                logger.warning("Failed to process %s: %s", path, e)

    findings = [f for file_findings, _ in results for f in file_findings]
    return findings, sum(parse_ms for _, parse_ms in results)


def _format_pretty(findings: List[Finding], files_count: int, rules_count: int,
                   metrics: Dict[str, float], text_cache: Dict[str, str]) -> str:
    out = [f"Scanned {files_count} files with {rules_count} rules", f"Found {len(findings)} issues", ""]

    by_file: Dict[str, List[Finding]] = {}
    for finding in findings:
        by_file.setdefault(finding.file, []).append(finding)

    adapter = get_adapter(LANGUAGE)
    for file_path in sorted(by_file):
        out.append(f"📁 {file_path}")
        text = text_cache.get(str(Path(file_path).resolve()))
        for finding in by_file[file_path]:
            if adapter is not None and text is not None:
                location = "%d:%d" % adapter.byte_to_linecol(text, finding.start_byte)
            else:
                location = f"byte {finding.start_byte}"
            icon = SEVERITY_ICONS.get(finding.severity, "❓")
            out.append(f"  {icon} {location}: {finding.message} ({finding.rule})")
        out.append("")

    out.append("📊 Metrics:")
    for label, key in (("Parse", "parse_ms"), ("Rules", "rules_ms"), ("Total", "total_ms")):
        out.append(f"  {label} time: {metrics[key]:.1f}ms")
    return "\n".join(out)


def format_output(findings: List[Finding], files_count: int, rules_count: int, metrics: Dict[str, float],
                  format_type: str, text_cache: Optional[Dict[str, str]] = None) -> str:
    """Render findings as ``json`` (protocol v1) or ``pretty``."""
    text_cache = text_cache or {}
    if format_type == "json":
        return json.dumps({
            "awaitguard.protocol": PROTOCOL_VERSION,
            "engine_version": ENGINE_VERSION,
            "files_scanned": files_count,
            "rules_run": rules_count,
            "findings": findings_to_json(findings, text_cache),
            "metrics": metrics,
        }, indent=2)
    if format_type == "pretty":
        return _format_pretty(findings, files_count, rules_count, metrics, text_cache)
    raise ValueError(f"Unknown format: {format_type}")


def _read_text_cache(files: List[str]) -> Dict[str, str]:
    cache = {}
    for path in files:
        try:
            cache[str(Path(path).resolve())] = Path(path).read_text(encoding='utf-8', errors='ignore')
        except OSError as e:
            logger.debug("Skipping %s in text cache: %s", path, e)
    return cache


def _execute(paths: List[str], rule_patterns: Optional[Sequence[str]], config: EngineConfig,
             discovery_packages: Sequence[str], jobs: int,
             extensions: Optional[Tuple[str, ...]] = None) -> RunResult:
    """Shared pipeline of ``analyze_paths`` and ``main``. Raises ValueError on invalid rule options."""
    started = time.perf_counter()
    setup_adapters()

    discovered = discover_rules(list(discovery_packages))
    logger.info("Discovered %d rules from %s: %s", discovered, list(discovery_packages), get_rule_ids())

    rules = get_enabled_rules(rule_patterns or config.enabled_rules, LANGUAGE)
    logger.info("Running %d rules: %s", len(rules), [r.meta.id for r in rules])

    errors = check_rule_configs(rules, config)
    if errors:
        raise ValueError("; ".join(errors))

    files = collect_files(paths, LANGUAGE, extensions)
    logger.info("Found %d files to analyze", len(files))

    if jobs == 0:
        jobs = min(4, len(files), os.cpu_count() or 1)

    rules_started = time.perf_counter()
    findings, parse_ms = run_analysis(files, LANGUAGE, rules, config, jobs)
    finished = time.perf_counter()

    metrics = {
        "parse_ms": parse_ms,
        "rules_ms": (finished - rules_started) * 1000,
        "total_ms": (finished - started) * 1000,
    }
    return RunResult(findings=findings, files=files, rules=rules, metrics=metrics)


def analyze_paths(paths: List[str], discovery_packages: Optional[List[str]] = None,
                  rule_patterns: Optional[List[str]] = None, config_path: Optional[str] = None,
                  jobs: int = 1) -> Dict[str, Any]:
    """
    Analyze files and directories and return the protocol v1 output as a dict.

    Args:
        paths: Files or directories to analyze
        discovery_packages: Packages to discover rules from (default: awaitguard.rules)
        rule_patterns: Rule id patterns (default: the config's enabled_rules)
        config_path: Config file (default: nearest to the first path)
        jobs: Worker threads; 0 picks a number from the CPU count

    Raises:
        ValueError: configured rule options do not match a rule's schema
    """
    config = load_config(config_path or find_config_file(paths[0] if paths else "."))
    result = _execute(paths, rule_patterns, config, discovery_packages or DEFAULT_DISCOVERY_PACKAGES, jobs)
    return json.loads(result.to_output("json"))


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="awaitguard",
        description="Flags Promise-returning calls that are neither awaited nor handled",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  awaitguard --paths src/ --format pretty\n"
            "  awaitguard --paths src/api.ts --rules 'concurrency.*' --format json --validate\n"
            "  awaitguard --paths frontend/ --jobs 4 --config .awaitguard.yml\n"
            "\n"
            "Exit status: 0 no findings, 1 findings or no files, 2 invalid configuration\n"
        ),
    )
    parser.add_argument("--paths", nargs="+", required=True,
                        help="Files or directories to analyze")
    parser.add_argument("--discover", default=",".join(DEFAULT_DISCOVERY_PACKAGES),
                        help="Comma-separated packages to discover rules from (default: %(default)s)")
    parser.add_argument("--rules",
                        help="Comma-separated rule ids or patterns, '*' for all (default: from config)")
    parser.add_argument("--exts",
                        help="Only analyze these extensions, comma-separated (e.g. '.ts,.tsx')")
    parser.add_argument("--jobs", type=int, default=0,
                        help="Worker threads: 0 auto, 1 sequential (default: %(default)s)")
    parser.add_argument("--validate", action="store_true",
                        help="Check JSON output against the protocol schema")
    parser.add_argument("--format", choices=["json", "pretty"], default="json",
                        help="Output format (default: %(default)s)")
    parser.add_argument("--config",
                        help="Config file (default: nearest .awaitguard.yml)")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log progress to stderr")
    return parser


def _split(value: Optional[str]) -> List[str]:
    return [part.strip() for part in (value or "").split(",") if part.strip()]


def main(argv: Optional[List[str]] = None) -> int:
    args = build_arg_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
    )

    config_path = args.config or find_config_file(args.paths[0])
    config = load_config(config_path)
    logger.info("Using config: %s", config_path or "defaults")

    try:
        result = _execute(
            args.paths,
            _split(args.rules) or None,
            config,
            _split(args.discover),
            args.jobs,
            tuple(_split(args.exts)) or None,
        )
    except ValueError as e:
        logger.error("Invalid rule options: %s", e)
        return EXIT_CONFIG_ERROR

    if not result.files:
        logger.error("No files found to analyze")
        return EXIT_FINDINGS

    output = result.to_output(args.format)
    if args.validate and args.format == "json":
        errors = validate_runner_output(json.loads(output))
        if errors:
            for error in errors:
                logger.error("JSON validation error: %s", error)
            return EXIT_CONFIG_ERROR

    print(output)
    return EXIT_FINDINGS if result.findings else EXIT_CLEAN


if __name__ == "__main__":
    sys.exit(main())
