import threading

import pytest

from aether import (
    Engine, EngineClosedError, ErrorKind, LimitKind, Limits, NotFoundError, OptimizationFlags,
    InvalidValueError, ResourceExceededError, UndefinedReferenceError, AetherSyntaxError,
    AetherTypeError,
)
from aether.aether_config import EngineConfig


def run_aether(src: str, **kwargs):
    engine = Engine(**kwargs)
    return engine.handle_script(src)


def assert_ok(res, expected=None):
    assert res.status == 'success', res.format_error()
    if expected is not None:
        assert res.value == expected, f"expected {expected!r}, got {res.value!r}"


def assert_error(res, kind, contains=None):
    assert res.status == 'error', f"expected error, got value {res.value!r}"
    assert res.error_kind == kind, res.format_error()
    if contains is not None:
        assert contains in res.error_message, res.error_message


# --- End-to-end examples ---

def test_add_two_globals():
    assert_ok(run_aether("Set X 10\nSet Y 20\n(X + Y)"), 30)


def test_fresh_environment_has_no_variables():
    assert_error(run_aether("X"), "UndefinedReference", "'X'")


def test_length_builtin():
    assert_ok(run_aether("LENGTH([1, 2, 3])"), 3)


def test_function_definition_and_call():
    src = """
    Func ADD (A, B) {
        Return (A + B)
    }
    ADD(15, 15)
    """
    assert_ok(run_aether(src), 30)


def test_eval_to_string_matches_host_rendering():
    with Engine() as engine:
        assert engine.eval_to_string("Set X 10\nSet Y 20\n(X + Y)") == "30"
        engine.set_global("greeting", "你好")
        assert engine.eval_to_string('Set MSG (greeting + " 来自 Aether!")\nMSG') == "你好 来自 Aether!"


def test_filter_users_from_host_config():
    config = {
        "users": [
            {"id": 1, "name": "张三", "score": 100},
            {"id": 2, "name": "李四", "score": 85},
            {"id": 3, "name": "王五", "score": 95},
        ],
        "threshold": 90,
    }
    src = """
    Func FILTER_HIGH_SCORE (USERS, THRESHOLD) {
        Set RESULT []
        For USER In USERS {
            If ((USER["score"] > THRESHOLD)) {
                Set RESULT PUSH(RESULT, USER)
            }
        }
        Return RESULT
    }

    Set HIGH_SCORERS (FILTER_HIGH_SCORE(config["users"], config["threshold"]))
    LENGTH(HIGH_SCORERS)
    """
    with Engine() as engine:
        engine.set_global("config", config)
        assert engine.eval(src) == 2
        names = [u["name"] for u in engine.get_global("HIGH_SCORERS")]
        assert names == ["张三", "王五"]


# --- Semantics ---

@pytest.mark.parametrize("src, expected", [
    ("(7 - 10)", -3),
    ("(7 % 3)", 1),
    ("(1 / 4)", 0.25),
    ('("ab" + "cd")', "abcd"),
    ("([1] + [2, 3])", [1, 2, 3]),
    ('({"a": 1, "b": 1} + {"b": 2})', {"a": 1, "b": 2}),
    ("([1, [2]] == [1, [2]])", True),
    ("(1 == True)", False),
    ('("a" < "b")', True),
    ("!0", True),
    ('!""', True),
    ("!{}", True),
    ("-(2 * 3)", -6),
    ('[10, 20, 30][-1]', 30),
    ('"héllo"[1]', "é"),
    ('{"a": 1}["missing"]', None),
    ("(Null || 5)", True),
    ("(0 && MISSING)", False),
])
def test_expression_semantics(src, expected):
    assert_ok(run_aether(src), expected)


@pytest.mark.parametrize("src, kind", [
    ('(1 + "a")', "TypeMismatch"),
    ("(1 / 0)", "DivisionByZero"),
    ("(5 % 0)", "DivisionByZero"),
    ("[1, 2][5]", "IndexOutOfRange"),
    ("[1, 2][0.5]", "TypeMismatch"),
    ("(1 < \"a\")", "TypeMismatch"),
    ("LENGTH(5)", "TypeMismatch"),
    ("NOPE(1)", "UndefinedReference"),
    ("Set F 1\nF(2)", "TypeMismatch"),
    ("Func F (A) { Return A }\nF(1, 2)", "TypeMismatch"),
    ("Func F (A) { Return A }\nSet G F", "TypeMismatch"),
    ("For X In 5 { X }", "TypeMismatch"),
    ("(1 + + 2)", "SyntaxError"),
])
def test_error_kinds(src, kind):
    assert_error(run_aether(src), kind)


def test_set_rebinds_enclosing_variable_and_params_are_local():
    src = """
    Set COUNT 0
    Set A "global"
    Func BUMP (A) {
        Set COUNT (COUNT + 1)
        Set A "local"
        Set TMP 1
        Return A
    }
    BUMP(1)
    BUMP(2)
    """
    with Engine() as engine:
        assert engine.eval(src) == "local"
        assert engine.get_global("COUNT") == 2
        assert engine.get_global("A") == "global"
        with pytest.raises(NotFoundError):
            engine.get_global("TMP")


def test_closures_capture_defining_scope():
    src = """
    Func MAKE (N) {
        Func INNER (M) { Return (N + M) }
        Return INNER(1)
    }
    MAKE(41)
    """
    assert_ok(run_aether(src), 42)


def test_user_function_shadows_builtin():
    assert_ok(run_aether("Func LENGTH (X) { Return 99 }\nLENGTH([1])"), 99)


def test_while_and_for_loops():
    src = """
    Set I 0
    Set TOTAL 0
    While (I < 5) { Set I (I + 1); Set TOTAL (TOTAL + I) }
    Set KEYS_SEEN ""
    For K In {"a": 1, "b": 2} { Set KEYS_SEEN (KEYS_SEEN + K) }
    For C In "xy" { Set KEYS_SEEN (KEYS_SEEN + C) }
    [TOTAL, KEYS_SEEN]
    """
    assert_ok(run_aether(src), [15, "abxy"])


def test_program_result_rules():
    assert_ok(run_aether("Set X 5"), 5)
    assert_ok(run_aether("Func F () { Return 1 }"), None)
    assert_ok(run_aether("If True { 5 }"), None)
    assert_ok(run_aether("Func F () { Set X 1 }\nF()"), None)
    assert_ok(run_aether("Set X 1\nReturn 7\nSet X 2"), 7)


def test_errors_keep_earlier_mutations():
    with Engine() as engine:
        res = engine.handle_script("Set X 1\n(X / 0)")
        assert_error(res, "DivisionByZero")
        assert engine.get_global("X") == 1


def test_runtime_error_reports_position():
    res = run_aether("Set X 1\nSet Y (X + \"a\")")
    assert res.error_position.line == 2
    formatted = res.format_error()
    assert formatted.startswith("Error on line 2")
    assert "^" in formatted


def test_eval_raises_typed_errors():
    with Engine() as engine:
        with pytest.raises(UndefinedReferenceError):
            engine.eval("X")
        with pytest.raises(AetherSyntaxError) as exc:
            engine.eval("Set")
        assert exc.value.kind is ErrorKind.SYNTAX
        assert exc.value.category == "SyntaxError"


# --- Deep nesting never escapes as a host exception ---

DEEP_PARENS = "(" * 5000 + "1" + ")" * 5000

# Deeper than the highest recursion limit the engine ever sets.
DEEP_ARRAY = "Set A []\nFor I In RANGE(30000) { Set A [A] }"


def test_deeply_nested_source_is_a_syntax_error():
    with Engine() as engine:
        res = engine.handle_script(DEEP_PARENS)
        assert_error(res, "SyntaxError")
        with pytest.raises(AetherSyntaxError):
            engine.eval(DEEP_PARENS)
        # The engine stays usable afterwards
        assert engine.eval("(1 + 1)") == 2


def test_deeply_nested_value_is_invalid_value_at_the_boundary():
    with Engine() as engine:
        engine.eval(DEEP_ARRAY)
        res = engine.handle_script("A")
        assert_error(res, "InvalidValue", "nested too deeply")
        with pytest.raises(InvalidValueError):
            engine.eval("A")
        with pytest.raises(InvalidValueError):
            engine.get_global("A")
        with pytest.raises(InvalidValueError):
            engine.get_global_json("A")
        assert engine.eval("LENGTH(A)") == 1


def test_deeply_nested_value_in_script_errors_are_typed():
    with Engine() as engine:
        engine.eval(DEEP_ARRAY)
        res = engine.handle_script('TRACE("deep", A)')
        assert res.status == 'error'
        assert res.error_kind in ("InvalidValue", "ResourceExceeded")
        assert res.error_kind != "InternalFault"


# --- Environment lifecycle ---

def test_reset_env_clears_variables_only():
    with Engine() as engine:
        engine.eval('Set X 1\nTRACE("t", X)')
        engine.reset_env()
        with pytest.raises(UndefinedReferenceError):
            engine.eval("X")
        assert engine.take_trace() == ["[INFO] t: 1"]
        assert engine.cache_stats().size == 2


def test_get_global_of_function_is_type_error():
    with Engine() as engine:
        engine.eval("Func F () { Return 1 }")
        with pytest.raises(AetherTypeError):
            engine.get_global("F")


def test_global_json_helpers():
    with Engine() as engine:
        engine.set_global_json("cfg", '{"port": 8080, "tags": ["a"]}')
        assert engine.eval('cfg["port"]') == 8080
        assert engine.get_global_json("cfg") == '{"port": 8080, "tags": ["a"]}'


# --- Cache ---

def test_idempotent_eval_hits_cache():
    src = "Set X 10\nSet Y 20\n(X + Y)"
    with Engine() as engine:
        first = engine.eval(src)
        second = engine.eval(src)
        assert first == second == 30
        stats = engine.cache_stats()
        assert (stats.hits, stats.misses, stats.size) == (1, 1, 1)


def test_optimizer_flags_change_fingerprint():
    with Engine() as engine:
        engine.eval("(1 + 2)")
        engine.set_optimization(constant_folding=True)
        engine.eval("(1 + 2)")
        stats = engine.cache_stats()
        assert stats.misses == 2
        assert stats.size == 2


def test_parse_failures_are_misses_and_not_cached():
    with Engine() as engine:
        assert engine.handle_script("Set").status == 'error'
        stats = engine.cache_stats()
        assert stats.misses == 1
        assert stats.size == 0


def test_clear_cache_keeps_counters():
    with Engine() as engine:
        engine.eval("1")
        engine.eval("1")
        engine.clear_cache()
        stats = engine.cache_stats()
        assert stats.size == 0
        assert stats.hits == 1


# --- Limits ---

def test_step_limit_stops_infinite_loop():
    with Engine() as engine:
        engine.set_limits(max_steps=50)
        with pytest.raises(ResourceExceededError) as exc:
            engine.eval("While True { }")
        assert exc.value.limit is LimitKind.STEP_LIMIT


def test_time_limit_stops_infinite_loop():
    with Engine() as engine:
        engine.set_limits(max_duration_ms=50)
        res = engine.handle_script("Set I 0\nWhile True { Set I (I + 1) }")
        assert_error(res, "ResourceExceeded")
        assert res.error.limit is LimitKind.TIME_LIMIT


RECURSIVE_SUM = """
Func SUM (N, ACC) {
    If (N == 0) { Return ACC }
    Return SUM((N - 1), (ACC + N))
}
SUM(500, 0)
"""


def test_deep_recursion_hits_recursion_limit():
    with Engine() as engine:
        res = engine.handle_script(RECURSIVE_SUM)
        assert_error(res, "ResourceExceeded")
        assert res.error.limit is LimitKind.RECURSION_LIMIT


def test_tail_call_optimization_runs_in_constant_depth():
    with Engine() as engine:
        engine.set_optimization(tail_call_optimization=True)
        assert engine.eval(RECURSIVE_SUM) == 125250


def test_non_tail_recursion_within_limit():
    src = """
    Func FACT (N) {
        If (N <= 1) { Return 1 }
        Return (N * FACT((N - 1)))
    }
    FACT(10)
    """
    assert_ok(run_aether(src), 3628800)


def test_tail_call_to_shadowed_name_runs_normally():
    # The inner F shadows the outer one, so the marked tail call must not loop back.
    src = """
    Func F (N) {
        Func F (M) { Return "inner" }
        If (N > 0) { Return F((N - 1)) }
        Return "done"
    }
    F(3)
    """
    with Engine() as engine:
        engine.set_optimization(True, True, True)
        assert engine.eval(src) == "inner"
        assert engine.eval("F(0)") == "done"


def test_limits_round_trip():
    with Engine() as engine:
        engine.set_limits({"max_steps": 100, "max_recursion_depth": -1, "max_duration_ms": 1000})
        limits = engine.get_limits()
        assert limits == Limits(100, None, 1000)
        assert limits.to_dict()["max_recursion_depth"] == -1
        with pytest.raises(ValueError):
            engine.set_limits(max_steps=0)
        assert engine.get_limits().max_steps == 100


def test_config_limits_apply():
    config = EngineConfig(limits=Limits(max_steps=20))
    with Engine(config=config) as engine:
        with pytest.raises(ResourceExceededError):
            engine.eval("Set I 0\nWhile (I < 100) { Set I (I + 1) }")


# --- Optimization flags ---

def test_optimization_flags_round_trip_and_results_agree():
    src = "Set X ((2 * 3) + 4)\nIf False { Set X 0 }\nX"
    with Engine() as engine:
        plain = engine.eval(src)
        assert engine.set_optimization(True, True, True) == OptimizationFlags.all()
        assert engine.get_optimization().dead_code_elimination is True
        assert engine.eval(src) == plain == 10


# --- Trace ---

def test_trace_ordering_levels_and_labels():
    src = """
    TRACE_DEBUG("api", "请求开始")
    Set USER_ID 42
    TRACE_INFO("auth", "用户认证: ", USER_ID)
    Set RESULT (USER_ID * 2)
    TRACE_WARN("calc", "结果翻倍: ", RESULT)
    Func CHECK () { TRACE_ERROR("check", [1, "a"]) }
    CHECK()
    """
    with Engine() as engine:
        engine.eval(src)
        assert engine.take_trace() == [
            "[DEBUG] api: 请求开始",
            "[INFO] auth: 用户认证:  42",
            "[WARN] calc: 结果翻倍:  84",
            '[ERROR] check: [1, "a"]',
        ]
        records = engine.trace_records()
        assert [r["level"] for r in records] == ["DEBUG", "INFO", "WARN", "ERROR"]
        assert records[3]["label"] == "CHECK"
        assert "label" not in records[0]
        stamps = [r["timestamp"] for r in records]
        assert stamps == sorted(stamps)
        stats = engine.trace_stats()
        assert stats.total_entries == 4
        assert stats.by_category["auth"] == 1
        # Reading does not consume
        assert len(engine.take_trace()) == 4
        engine.clear_trace()
        assert engine.take_trace() == []
        assert engine.trace_stats().total_entries == 0


def test_trace_requires_string_category():
    assert_error(run_aether("TRACE(1, 2)"), "TypeMismatch")
    assert_error(run_aether("TRACE()"), "TypeMismatch")


def test_trace_buffer_capacity_from_config():
    with Engine(config=EngineConfig(trace_capacity=3)) as engine:
        engine.eval('For I In RANGE(5) { TRACE("n", I) }')
        assert engine.take_trace() == ["[INFO] n: 2", "[INFO] n: 3", "[INFO] n: 4"]
        assert engine.trace_stats().buffer_full is True


def test_handle_script_reports_trace_of_this_run():
    with Engine() as engine:
        engine.eval('TRACE("old")')
        res = engine.handle_script('TRACE("new", 1)')
        assert res.trace == ["[INFO] new: 1"]


# --- Built-ins ---

@pytest.mark.parametrize("src, expected", [
    ('TYPE_OF({})', "Object"),
    ('KEYS({"b": 1, "a": 2})', ["b", "a"]),
    ('VALUES({"b": 1, "a": 2})', [1, 2]),
    ('HAS_KEY({"a": 1}, "a")', True),
    ('PUSH([1], 2)', [1, 2]),
    ('RANGE(2, 5)', [2, 3, 4]),
    ('TO_STRING([1, "x", Null])', '[1, "x", Null]'),
    ('TO_NUMBER(" 2.5 ")', 2.5),
    ('ABS(-3)', 3),
    ('FLOOR(2.7)', 2),
    ('MIN(3, 1, 2)', 1),
    ('MAX([3, 9, 2])', 9),
    ('JOIN(["a", 1], "-")', "a-1"),
    ('SPLIT("a,b", ",")', ["a", "b"]),
    ('UPPER("abc")', "ABC"),
    ('LOWER("ABC")', "abc"),
])
def test_pure_builtins(src, expected):
    assert_ok(run_aether(src), expected)


def test_builtin_arity_is_checked():
    assert_error(run_aether("LENGTH()"), "TypeMismatch", "LENGTH expects 1")
    assert_error(run_aether("PUSH([1])"), "TypeMismatch")


def test_range_counts_against_step_limit():
    with Engine() as engine:
        engine.set_limits(max_steps=100)
        with pytest.raises(ResourceExceededError):
            engine.eval("RANGE(1000)")


# --- Concurrency and lifecycle ---

def test_concurrent_evals_on_one_engine():
    errors = []
    with Engine() as engine:
        engine.set_global("BASE", 100)

        def worker(n):
            try:
                for _ in range(20):
                    assert engine.eval(f"Func ADD (A, B) {{ Return (A + B) }}\nADD(BASE, {n})") == 100 + n
                    engine.cache_stats()
                    engine.take_trace()
            except Exception as e:  # collected for the main thread
                errors.append(e)

        threads = [threading.Thread(target=worker, args=(i,)) for i in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()
    assert errors == []


def test_engines_are_isolated():
    a, b = Engine(), Engine()
    a.eval("Set X 1")
    with pytest.raises(UndefinedReferenceError):
        b.eval("X")
    a.close()
    b.close()


def test_close_is_idempotent_and_blocks_later_calls():
    engine = Engine()
    engine.eval("Set X 1")
    engine.close()
    engine.close()
    assert engine.closed
    with pytest.raises(EngineClosedError):
        engine.eval("1")
    with pytest.raises(EngineClosedError):
        engine.get_global("X")
    with pytest.raises(EngineClosedError):
        engine.cache_stats()
    assert_error(engine.handle_script("1"), "EngineClosed")


def test_context_manager_closes():
    with Engine() as engine:
        pass
    assert engine.closed


def test_version():
    import aether
    assert aether.version() == aether.__version__
