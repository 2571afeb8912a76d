"""
Parsing utilities for SimReg.

This module provides parsing functions for R-style model formulas and for
the compact comma-separated assignment strings accepted by the
specification objects (variable descriptors, regression weights and
pairwise correlations).
"""

import re
from dataclasses import dataclass
from itertools import combinations
from typing import Any, Dict, List, Optional, Tuple

from ..errors import ConfigurationError

__all__ = []

# Unicode-aware identifier pattern: letter or underscore, then word characters
_IDENT = r"[^\W\d]\w*"


@dataclass(frozen=True)
class Term:
    """A fixed-effect term: a main effect (one variable) or an interaction."""

    name: str
    variables: Tuple[str, ...]

    @property
    def is_interaction(self) -> bool:
        return len(self.variables) > 1


@dataclass(frozen=True)
class RandomTerm:
    """A random-effect term ``(1 + slope | group)``."""

    group: str
    intercept: bool = True
    slopes: Tuple[str, ...] = ()


@dataclass(frozen=True)
class ParsedFormula:
    """Components of an R-style formula.

    Attributes:
        response: Name of the dependent variable.
        terms: Fixed-effect terms in formula order.
        intercept: Whether the fixed part keeps an intercept.
        random: Random-effect terms.
    """

    response: str
    terms: Tuple[Term, ...]
    intercept: bool = True
    random: Tuple[RandomTerm, ...] = ()

    @property
    def variables(self) -> List[str]:
        """Predictor variables of the fixed part, in order of first appearance."""
        seen: List[str] = []
        for term in self.terms:
            for var in term.variables:
                if var not in seen:
                    seen.append(var)
        return seen

    @property
    def grouping_vars(self) -> List[str]:
        return [r.group for r in self.random]

    @property
    def fixed_formula(self) -> str:
        """Fixed part as a patsy formula string (``y ~ x1 + x2``)."""
        rhs = [t.name for t in self.terms]
        if not self.intercept:
            rhs.append("-1" if rhs else "0")
        elif not rhs:
            rhs = ["1"]
        return f"{self.response} ~ " + " + ".join(rhs).replace("+ -1", "- 1")

    @property
    def re_formula(self) -> Optional[str]:
        """Random part as a statsmodels ``re_formula`` (first grouping term only)."""
        if not self.random:
            return None
        first = self.random[0]
        parts = ["1" if first.intercept else "0"] + list(first.slopes)
        return "~" + " + ".join(parts)


def _split_random_terms(formula_part: str) -> Tuple[str, List[RandomTerm]]:
    """Extract ``(...|group)`` terms from the right-hand side."""
    random_terms: List[RandomTerm] = []
    seen_groups = set()

    pattern = rf"\(([^|()]+)\|\s*({_IDENT})\s*\)"
    for match in re.finditer(pattern, formula_part):
        inner, group = match.group(1), match.group(2)
        if group in seen_groups:
            raise ConfigurationError(f"Duplicate random effect grouping variable: '{group}'")
        seen_groups.add(group)

        intercept = True
        slopes: List[str] = []
        for token in (t.strip() for t in inner.split("+")):
            if not token:
                continue
            if token == "1":
                intercept = True
            elif token == "0":
                intercept = False
            elif re.fullmatch(_IDENT, token):
                slopes.append(token)
            else:
                raise ConfigurationError(f"Invalid random effect term '{token}' for group '{group}'")

        if not intercept and not slopes:
            raise ConfigurationError(f"Random effect term for '{group}' has neither intercept nor slopes")
        random_terms.append(RandomTerm(group=group, intercept=intercept, slopes=tuple(slopes)))

    formula_part = re.sub(pattern, "", formula_part)
    return formula_part, random_terms


def _parse_fixed_terms(formula_part: str) -> Tuple[List[Term], bool]:
    """Parse the fixed part into terms and the intercept flag.

    Handles ``+`` for additive terms, ``:`` for specific interactions, ``*``
    for full factorial expansion, and ``-1`` / ``0`` for intercept removal.
    """
    terms: List[Term] = []
    seen = set()
    intercept = True

    def _add(variables):
        name = ":".join(variables)
        if name not in seen:
            seen.add(name)
            terms.append(Term(name=name, variables=tuple(variables)))

    for sign, token in re.findall(r"([+-]?)([^+-]+)", formula_part):
        token = token.strip()
        if not token:
            continue
        if token in ("0", "1"):
            if token == "0" or sign == "-":
                intercept = False
            continue
        if sign == "-":
            raise ConfigurationError(f"Removing terms is not supported: '-{token}'")

        variables = re.findall(_IDENT, token)
        leftover = re.sub(_IDENT, "", token).replace(":", "").replace("*", "")
        if not variables or leftover.strip():
            raise ConfigurationError(f"Invalid formula term '{token}'")
        if len(set(variables)) != len(variables):
            raise ConfigurationError(f"Variable repeated within term '{token}'")

        if "*" in token:
            # For x1*x2*x3: add main effects + all possible interactions
            for r in range(1, len(variables) + 1):
                for combo in combinations(variables, r):
                    _add(combo)
        else:
            _add(variables)

    return terms, intercept


def parse_formula(formula: str) -> ParsedFormula:
    """Parse an R-style formula into its components.

    Supported syntax: ``~`` or ``=`` separator, ``+`` for additive terms,
    ``:`` for interactions, ``*`` for main effects plus all interactions,
    ``-1`` or ``0 +`` to drop the intercept, ``(1|g)`` random intercepts and
    ``(1 + x|g)`` random intercepts with slopes.

    Args:
        formula: Formula string (e.g. ``"y ~ x1 + x2 + (1|cluster)"``).

    Returns:
        ``ParsedFormula``.

    Raises:
        ConfigurationError: For empty sides, unsupported tokens or duplicate
            grouping variables.
    """
    if not isinstance(formula, str) or not formula.strip():
        raise ConfigurationError("formula must be a non-empty string")

    if "~" in formula:
        left_side, right_side = formula.split("~", 1)
    elif "=" in formula:
        left_side, right_side = formula.split("=", 1)
    else:
        raise ConfigurationError(f"Formula '{formula}' needs a response: 'y ~ x1 + x2'")

    response = left_side.strip()
    if not re.fullmatch(_IDENT, response):
        raise ConfigurationError(f"Invalid response name '{response}' in formula '{formula}'")

    fixed_part, random_terms = _split_random_terms(right_side)
    if not fixed_part.strip() and not random_terms:
        raise ConfigurationError(f"Formula '{formula}' has an empty right-hand side")

    terms, intercept = _parse_fixed_terms(fixed_part)
    parsed = ParsedFormula(response=response, terms=tuple(terms), intercept=intercept, random=tuple(random_terms))

    if response in parsed.variables or response in parsed.grouping_vars:
        raise ConfigurationError(f"Response '{response}' also appears on the right-hand side")
    return parsed


class _AssignmentParser:
    """Parses comma-separated ``name=value`` assignment strings.

    Supports three parse types ("variable", "weight" and "correlation"),
    each with a specialised value handler. Correlation assignments use the
    syntax ``corr(var1, var2)=value``.

    A module-level singleton ``_parser`` is used throughout the codebase.
    """

    def __init__(self):
        self.handlers = {
            "variable": self._parse_variable_value,
            "weight": self._parse_weight_value,
            "correlation": self._parse_correlation_value,
        }

    def _parse(self, input_string: str, parse_type: str, available_items: Optional[List[str]] = None) -> Tuple[Dict, List[str]]:
        """Parse a comma-separated assignment string.

        Args:
            input_string: Raw user input (e.g. ``"x1=0.5, x2=0.3"``).
            parse_type: One of ``"variable"``, ``"weight"`` or ``"correlation"``.
            available_items: Valid left-hand-side names; ``None`` accepts any
                identifier.

        Returns:
            Tuple of ``(parsed_dict, error_list)``. For correlations the
            dict is keyed by variable-name tuples; otherwise by name.
        """
        if parse_type not in self.handlers:
            return {}, [f"Unknown parse type: {parse_type}"]

        parsed_items: Dict[Any, Any] = {}
        errors = []

        for assignment in self._split_assignments(input_string):
            try:
                name, value = self._parse_assignment(assignment, parse_type)
            except ValueError as e:
                errors.append(str(e))
                continue

            names = name if parse_type == "correlation" else (name,)
            missing = [n for n in names if available_items is not None and n not in available_items]
            if missing:
                errors.append(f"'{missing[0]}' not found. Available: {', '.join(available_items or [])}")
                continue
            if parse_type == "correlation" and name[0] == name[1]:
                errors.append(f"Cannot correlate variable with itself: '{name[0]}'")
                continue

            parsed_value, error = self.handlers[parse_type](value)
            if error:
                errors.append(f"{name}: {error}")
                continue
            parsed_items[name] = parsed_value

        return parsed_items, errors

    def _split_assignments(self, input_string: str) -> List[str]:
        """Split assignments respecting parentheses."""
        assignments = []
        current: List[str] = []
        paren_count = 0

        for char in input_string:
            if char == "," and paren_count == 0:
                if current:
                    assignments.append("".join(current).strip())
                    current = []
            else:
                if char == "(":
                    paren_count += 1
                elif char == ")":
                    paren_count -= 1
                current.append(char)

        if current and "".join(current).strip():
            assignments.append("".join(current).strip())

        return assignments

    def _parse_assignment(self, assignment: str, parse_type: str) -> Tuple[Any, str]:
        """Parse single assignment into name and value parts."""
        if "=" not in assignment:
            raise ValueError(f"Invalid format: '{assignment}'. Expected 'name=value'")

        if parse_type == "correlation":
            return self._parse_correlation_assignment(assignment)

        # Split on the first '=' outside parentheses so keyword arguments survive
        depth = 0
        for i, char in enumerate(assignment):
            if char == "(":
                depth += 1
            elif char == ")":
                depth -= 1
            elif char == "=" and depth == 0:
                return assignment[:i].strip(), assignment[i + 1 :].strip()
        raise ValueError(f"Invalid format: '{assignment}'. Expected 'name=value'")

    def _parse_correlation_assignment(self, assignment: str) -> Tuple[Tuple[str, str], str]:
        """Parse correlation assignment like 'corr(x1,x2)=0.5' or 'x1:x2=0.5'."""
        left, right = assignment.rsplit("=", 1)
        left = left.strip()

        match = re.fullmatch(r"(?:corr?)?\s*\(\s*([^,]+?)\s*,\s*([^,]+?)\s*\)", left)
        if match is None:
            match = re.fullmatch(rf"({_IDENT})\s*:\s*({_IDENT})", left)
        if match is None:
            raise ValueError(f"Invalid correlation format: '{left}'. Expected 'corr(var1, var2)' or 'var1:var2'")

        var1, var2 = match.groups()
        return (var1.strip(), var2.strip()), right.strip()

    def _parse_variable_value(self, value: str) -> Tuple[Dict[str, Any], Optional[str]]:
        """Parse a variable descriptor such as ``normal(0, 1)`` or ``factor(a, b)``.

        Positional arguments are interpreted per type: ``normal(mean, sd)``,
        ``uniform(low, high)``, ``binary(p)``, ``ordinal(low, high)``,
        ``factor(k)`` or ``factor(label, ...)``, ``random(group, variance)``.
        Keyword arguments (``gamma(a=2)``, ``random(id, 0.5, slope=time)``)
        are passed through as distribution parameters or descriptor fields.
        """
        match = re.fullmatch(rf"\s*({_IDENT})\s*(?:\((.*)\))?\s*", value)
        if match is None:
            return {}, f"Invalid variable descriptor '{value}'"

        kind, args_str = match.group(1), match.group(2)
        positional: List[Any] = []
        keywords: Dict[str, Any] = {}
        for arg in self._split_assignments(args_str or ""):
            if "=" in arg:
                key, raw = arg.split("=", 1)
                keywords[key.strip()] = _coerce(raw.strip())
            else:
                positional.append(_coerce(arg))

        if kind == "binary":
            p = positional[0] if positional else keywords.get("p", 0.5)
            if not isinstance(p, (int, float)) or not 0 < p < 1:
                return {}, f"Binary proportion must be between 0 and 1, got {p}"
            return {"type": "ordinal", "levels": [0, 1], "weights": [1 - p, p]}, None

        if kind == "ordinal":
            if len(positional) != 2:
                return {}, "Ordinal format: ordinal(low, high)"
            return {"type": "ordinal", "levels": positional}, None

        if kind == "factor":
            if len(positional) == 1 and isinstance(positional[0], int):
                levels: Any = positional[0]
            elif len(positional) >= 2:
                levels = [str(p) for p in positional]
            else:
                return {}, "Factor format: factor(k) or factor(label1, label2, ...)"
            return {"type": "factor", "levels": levels}, None

        if kind == "time":
            return {"type": "time", **keywords}, None

        if kind == "random":
            if len(positional) < 2:
                return {}, "Random effect format: random(group, variance)"
            return {"type": "random_effect", "group": str(positional[0]), "variance": positional[1], **keywords}, None

        # Any other name is a continuous distribution
        params = dict(keywords)
        if kind in ("normal", "norm") and positional:
            params.update(dict(zip(("mean", "sd"), positional)))
        elif kind == "uniform" and positional:
            if len(positional) != 2:
                return {}, "Uniform format: uniform(low, high)"
            low, high = positional
            params.update({"loc": low, "scale": high - low})
        elif positional:
            return {}, f"Use keyword parameters for '{kind}', e.g. {kind}(a=2)"
        return {"type": "continuous", "distribution": kind, "params": params}, None

    def _parse_correlation_value(self, value: str) -> Tuple[float, Optional[str]]:
        """Parse correlation value."""
        try:
            corr = float(value)
            if not -1 <= corr <= 1:
                return 0.0, "Correlation must be between -1 and 1"
            return corr, None
        except ValueError:
            return 0.0, f"Invalid correlation value '{value}'"

    def _parse_weight_value(self, value: str) -> Tuple[float, Optional[str]]:
        """Parse regression weight value."""
        try:
            return float(value), None
        except ValueError:
            return 0.0, f"Invalid weight '{value}'. Must be a number"


def _coerce(raw: str) -> Any:
    """Convert a literal argument to int, float or stripped string."""
    raw = raw.strip().strip("'\"")
    for caster in (int, float):
        try:
            return caster(raw)
        except ValueError:
            continue
    return raw


_parser = _AssignmentParser()
