"""
Condition Evaluator - deterministic rule and branch evaluation for condition nodes.

Pure Python, no I/O. Operators accept English names and the Portuguese
aliases used by older flows.
"""
import re
import math
import logging
from typing import Any, Dict, Optional, Callable, List

from ..models.flow import ConditionNodeData, ConditionBranch, ConditionRule
from .interpolator import interpolate, resolve_path, stringify, strip_braces

logger = logging.getLogger(__name__)

TRUE_HANDLE = "true"
FALSE_HANDLE = "false"

_BRAZILIAN_NUMBER = re.compile(r"-?\d{1,3}(\.\d{3})*(,\d+)?|-?\d+,\d+")


class ConditionEvaluator:
    """
    Evaluates condition node branches against the variable bag.

    Comparison rules:
    - equals / not_equals: numeric when both sides are numbers, otherwise
      case-insensitive string comparison
    - greater_than / less_than (and the *_or_equal forms): numeric only,
      False when either side is not a number
    - contains / starts_with / ends_with: case-insensitive; contains also
      checks membership when the variable is a list
    """

    OPERATORS: Dict[str, Callable[[Any, Any], bool]] = {
        "equals": lambda actual, expected: ConditionEvaluator._safe_equals(actual, expected),
        "not_equals": lambda actual, expected: not ConditionEvaluator._safe_equals(actual, expected),

        "greater_than": lambda actual, expected: ConditionEvaluator._safe_compare(actual, expected, lambda a, b: a > b),
        "less_than": lambda actual, expected: ConditionEvaluator._safe_compare(actual, expected, lambda a, b: a < b),
        "greater_or_equal": lambda actual, expected: ConditionEvaluator._safe_compare(actual, expected, lambda a, b: a >= b),
        "less_or_equal": lambda actual, expected: ConditionEvaluator._safe_compare(actual, expected, lambda a, b: a <= b),

        "contains": lambda actual, expected: ConditionEvaluator._safe_contains(actual, expected),
        "not_contains": lambda actual, expected: not ConditionEvaluator._safe_contains(actual, expected),
        "starts_with": lambda actual, expected: ConditionEvaluator._safe_affix(actual, expected, str.startswith),
        "ends_with": lambda actual, expected: ConditionEvaluator._safe_affix(actual, expected, str.endswith),

        "exists": lambda actual, _: actual is not None,
        "not_exists": lambda actual, _: actual is None,
        "is_empty": lambda actual, _: ConditionEvaluator._is_empty(actual),
        "is_not_empty": lambda actual, _: not ConditionEvaluator._is_empty(actual),

        "matches_regex": lambda actual, expected: ConditionEvaluator._safe_regex_match(actual, expected),
    }

    # Alternate spellings -> canonical operator
    ALIASES: Dict[str, str] = {
        "equal": "equals", "eq": "equals", "==": "equals", "igual": "equals",
        "not_equal": "not_equals", "neq": "not_equals", "!=": "not_equals", "diferente": "not_equals",
        "gt": "greater_than", ">": "greater_than", "maior": "greater_than", "maior_que": "greater_than",
        "lt": "less_than", "<": "less_than", "menor": "less_than", "menor_que": "less_than",
        "gte": "greater_or_equal", ">=": "greater_or_equal", "greater_equal": "greater_or_equal",
        "maior_ou_igual": "greater_or_equal",
        "lte": "less_or_equal", "<=": "less_or_equal", "less_equal": "less_or_equal",
        "menor_ou_igual": "less_or_equal",
        "contem": "contains", "nao_contem": "not_contains",
        "startswith": "starts_with", "comeca_com": "starts_with",
        "endswith": "ends_with", "termina_com": "ends_with",
        "existe": "exists", "nao_existe": "not_exists",
        "empty": "is_empty", "vazio": "is_empty",
        "not_empty": "is_not_empty", "nao_vazio": "is_not_empty",
        "matches": "matches_regex", "regex": "matches_regex",
    }

    # =========================================================================
    # RULES AND BRANCHES
    # =========================================================================

    @classmethod
    def evaluate(cls, actual: Any, operator: str, expected: Any) -> bool:
        """Apply one operator to already-resolved operands"""
        name = cls._normalize_operator(operator)
        operator_func = cls.OPERATORS.get(cls.ALIASES.get(name, name))

        if operator_func is None:
            logger.warning(f"Unknown condition operator: '{operator}'")
            return False

        return operator_func(actual, expected)

    @classmethod
    def evaluate_rule(cls, rule: ConditionRule, variables: Dict[str, Any]) -> bool:
        """
        Evaluate a single (variableName, operator, valueToCompare) rule.

        The variable name may be written as a token (`{{name}}`); the compare
        value is interpolated before comparison.
        """
        actual = resolve_path(variables, strip_braces(rule.variable_name))
        expected = rule.value_to_compare
        if isinstance(expected, str):
            expected = interpolate(expected, variables)

        result = cls.evaluate(actual, rule.operator, expected)

        logger.debug(
            f"Rule evaluated: {rule.variable_name}={repr(actual)} "
            f"{rule.operator} {repr(expected)} -> {result}"
        )
        return result

    @classmethod
    def evaluate_branch(cls, branch: ConditionBranch, variables: Dict[str, Any]) -> bool:
        """A branch with no rules is never true"""
        if not branch.rules:
            return False

        results = (cls.evaluate_rule(rule, variables) for rule in branch.rules)
        if branch.logical_operator.strip().upper() == "OR":
            return any(results)
        return all(results)

    @classmethod
    def select_branch(cls, data: ConditionNodeData, variables: Dict[str, Any]) -> Optional[str]:
        """
        Return the handle id of the first true branch.

        Falls back to the node's default handle; None means no outgoing edge.
        """
        if not data.branch_configs and data.variable_to_check:
            rule = ConditionRule(
                variable_name=data.variable_to_check,
                operator=data.operator or "equals",
                value_to_compare=data.value_to_compare
            )
            return TRUE_HANDLE if cls.evaluate_rule(rule, variables) else FALSE_HANDLE

        for branch in data.branch_configs:
            if cls.evaluate_branch(branch, variables):
                return branch.handle_id

        return data.default_handle_id

    # =========================================================================
    # HELPERS
    # =========================================================================

    @staticmethod
    def _normalize_operator(operator: Optional[str]) -> str:
        if not operator:
            return ""
        return operator.strip().lower().replace(" ", "_").replace("-", "_")

    @staticmethod
    def _coerce_to_number(value: Any) -> Optional[float]:
        """
        Coerce to float, or None when the value is not numeric.

        Accepts "12", "3.5" and Brazilian formatted "1.234,56".
        Booleans are not numbers here.
        """
        if isinstance(value, bool) or value is None:
            return None

        if isinstance(value, (int, float)):
            return float(value)

        if isinstance(value, str):
            cleaned = value.strip()
            if not cleaned:
                return None
            try:
                number = float(cleaned)
                return number if math.isfinite(number) else None
            except ValueError:
                pass
            if _BRAZILIAN_NUMBER.fullmatch(cleaned):
                return float(cleaned.replace(".", "").replace(",", "."))

        return None

    @staticmethod
    def _text(value: Any) -> str:
        if value is None:
            return ""
        return stringify(value).strip().lower()

    @staticmethod
    def _is_empty(value: Any) -> bool:
        """None, blank strings and empty collections are empty; zero is not"""
        if value is None:
            return True
        if isinstance(value, str):
            return value.strip() == ""
        if isinstance(value, (list, dict, set, tuple)):
            return len(value) == 0
        return False

    @staticmethod
    def _safe_equals(actual: Any, expected: Any) -> bool:
        if actual is None or expected is None:
            return actual is None and expected is None

        actual_num = ConditionEvaluator._coerce_to_number(actual)
        expected_num = ConditionEvaluator._coerce_to_number(expected)
        if actual_num is not None and expected_num is not None:
            return actual_num == expected_num

        return ConditionEvaluator._text(actual) == ConditionEvaluator._text(expected)

    @staticmethod
    def _safe_compare(
        actual: Any,
        expected: Any,
        comparator: Callable[[float, float], bool]
    ) -> bool:
        actual_num = ConditionEvaluator._coerce_to_number(actual)
        expected_num = ConditionEvaluator._coerce_to_number(expected)

        if actual_num is None or expected_num is None:
            return False

        return comparator(actual_num, expected_num)

    @staticmethod
    def _safe_contains(actual: Any, expected: Any) -> bool:
        if actual is None or expected is None:
            return False

        needle = ConditionEvaluator._text(expected)
        if isinstance(actual, (list, tuple, set)):
            return any(ConditionEvaluator._text(item) == needle for item in actual)

        return needle in ConditionEvaluator._text(actual)

    @staticmethod
    def _safe_affix(actual: Any, expected: Any, check: Callable[[str, str], bool]) -> bool:
        if actual is None or expected is None:
            return False
        return check(ConditionEvaluator._text(actual), ConditionEvaluator._text(expected))

    @staticmethod
    def _safe_regex_match(actual: Any, pattern: Any) -> bool:
        if actual is None or not pattern:
            return False
        try:
            return re.search(str(pattern), stringify(actual), re.IGNORECASE) is not None
        except re.error as e:
            logger.warning(f"Invalid regex pattern '{pattern}': {e}")
            return False

    @classmethod
    def get_available_operators(cls) -> List[str]:
        """Canonical operator names plus aliases"""
        return sorted(set(cls.OPERATORS) | set(cls.ALIASES))

    @classmethod
    def is_known_operator(cls, operator: Optional[str]) -> bool:
        name = cls._normalize_operator(operator)
        return cls.ALIASES.get(name, name) in cls.OPERATORS
