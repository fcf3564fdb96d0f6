"""Piecewise linear functions."""

from __future__ import annotations

import math
import sys
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Iterable, TextIO

DEFAULT_EPS = 1e-6


@dataclass(frozen=True)
class Interval:
    """A closed interval [start, end]."""

    start: float
    end: float

    def contains(self, value: float) -> bool:
        return self.start <= value <= self.end

    def clip(self, value: float) -> float:
        if value < self.start:
            return self.start
        if value > self.end:
            return self.end
        return value

    def length(self) -> float:
        return self.end - self.start


@dataclass(frozen=True)
class Point:
    """A 2D point or vector."""

    x: float = 0.0
    y: float = 0.0

    def __add__(self, other: Point) -> Point:
        return Point(self.x + other.x, self.y + other.y)

    def __sub__(self, other: Point) -> Point:
        return Point(self.x - other.x, self.y - other.y)

    def __mul__(self, factor: float) -> Point:
        return Point(self.x * factor, self.y * factor)

    __rmul__ = __mul__

    def __truediv__(self, factor: float) -> Point:
        return Point(self.x / factor, self.y / factor)

    def dot(self, other: Point) -> float:
        return self.x * other.x + self.y * other.y

    def len2(self) -> float:
        return self.x * self.x + self.y * self.y

    def length(self) -> float:
        return math.sqrt(self.len2())


class PerpType(Enum):
    """Kind of closest point found by :meth:`Pwl.invert`."""

    NOT_FOUND = "not_found"
    START = "start"
    END = "end"
    VERTEX = "vertex"
    PERPENDICULAR = "perpendicular"


class Pwl:
    """A piecewise linear function given by control points with increasing x."""

    def __init__(self, points: Iterable[Point | tuple[float, float]] = ()) -> None:
        self._points: list[Point] = [
            p if isinstance(p, Point) else Point(*p) for p in points
        ]

    @classmethod
    def from_values(cls, values: Iterable[float]) -> Pwl:
        """Build from a flat sequence x0, y0, x1, y1, ... with strictly increasing x."""
        flat = [float(v) for v in values]
        if len(flat) % 2:
            raise ValueError("piecewise linear function needs x, y pairs")
        pwl = cls()
        for x, y in zip(flat[::2], flat[1::2]):
            if pwl._points and x <= pwl._points[-1].x:
                raise ValueError("x values must be strictly increasing")
            pwl._points.append(Point(x, y))
        if len(pwl._points) < 2:
            raise ValueError("piecewise linear function needs at least two points")
        return pwl

    def points(self) -> list[Point]:
        """A copy of the control points."""
        return list(self._points)

    def __len__(self) -> int:
        return len(self._points)

    def __repr__(self) -> str:
        return f"Pwl({[(p.x, p.y) for p in self._points]!r})"

    def append(self, x: float, y: float, eps: float = DEFAULT_EPS) -> None:
        """Add a point at the end unless it is not beyond the last x by more than eps."""
        if not self._points or self._points[-1].x + eps < x:
            self._points.append(Point(x, y))

    def prepend(self, x: float, y: float, eps: float = DEFAULT_EPS) -> None:
        """Add a point at the start unless it is not before the first x by more than eps."""
        if not self._points or self._points[0].x - eps > x:
            self._points.insert(0, Point(x, y))

    def domain(self) -> Interval:
        if not self._points:
            raise ValueError("empty piecewise linear function has no domain")
        return Interval(self._points[0].x, self._points[-1].x)

    def range(self) -> Interval:
        if not self._points:
            raise ValueError("empty piecewise linear function has no range")
        ys = [p.y for p in self._points]
        return Interval(min(ys), max(ys))

    def empty(self) -> bool:
        return not self._points

    def find_span(self, x: float, span: int) -> int:
        """Index of the span containing x, starting the search from ``span``."""
        pts = self._points
        last_span = len(pts) - 2
        span = max(0, min(last_span, span))
        while span < last_span and x >= pts[span + 1].x:
            span += 1
        while span and x < pts[span].x:
            span -= 1
        return span

    def eval_with_span(self, x: float, span: int = -1) -> tuple[float, int]:
        """Evaluate at x using ``span`` as a guess (-1 for none); return value and span."""
        if len(self._points) < 2:
            raise ValueError("cannot evaluate with fewer than two points")
        guess = span if span != -1 else len(self._points) // 2 - 1
        span = self.find_span(x, guess)
        p0 = self._points[span]
        p1 = self._points[span + 1]
        value = p0.y + (x - p0.x) * (p1.y - p0.y) / (p1.x - p0.x)
        return value, span

    def eval(self, x: float, span: int | None = None) -> float:
        """Evaluate at x, optionally with a guess for the span."""
        return self.eval_with_span(x, -1 if span is None else span)[0]

    def invert(
        self, xy: Point, span: int = -1, eps: float = DEFAULT_EPS
    ) -> tuple[PerpType, Point | None, int]:
        """Find the closest point to xy, searching from span + 1.

        Returns the kind of point found, the point itself (None if not found)
        and the span it was found in, so the search can be resumed.
        """
        if span < -1:
            raise ValueError("span must be at least -1")
        pts = self._points
        prev_off_end = False
        span += 1
        while span < len(pts) - 1:
            span_vec = pts[span + 1] - pts[span]
            t = (xy - pts[span]).dot(span_vec) / span_vec.len2()
            if t < -eps:
                if span == 0:
                    return PerpType.START, pts[span], span
                if prev_off_end:
                    return PerpType.VERTEX, pts[span], span
            elif t > 1 + eps:
                if span == len(pts) - 2:
                    return PerpType.END, pts[span + 1], span
                prev_off_end = True
            else:
                return PerpType.PERPENDICULAR, pts[span] + span_vec * t, span
            span += 1
        return PerpType.NOT_FOUND, None, span

    def compose(self, other: Pwl, eps: float = DEFAULT_EPS) -> Pwl:
        """Compose with ``other``, applying this function first."""
        pts = self._points
        opts = other._points
        this_x, this_y = pts[0].x, pts[0].y
        this_span = 0
        other_span = other.find_span(this_y, 0)
        result = Pwl([Point(this_x, other.eval(this_y, other_span))])
        while this_span != len(pts) - 1:
            dx = pts[this_span + 1].x - pts[this_span].x
            dy = pts[this_span + 1].y - pts[this_span].y
            if (
                abs(dy) > eps
                and other_span + 1 < len(opts)
                and pts[this_span + 1].y >= opts[other_span + 1].x + eps
            ):
                # Where this function's y reaches the next span of other.
                this_x = pts[this_span].x + (opts[other_span + 1].x - pts[this_span].y) * dx / dy
                other_span += 1
                this_y = opts[other_span].x
            elif (
                abs(dy) > eps
                and other_span > 0
                and pts[this_span + 1].y <= opts[other_span - 1].x - eps
            ):
                # Where this function's y reaches the previous span of other.
                this_x = pts[this_span].x + (opts[other_span + 1].x - pts[this_span].y) * dx / dy
                other_span -= 1
                this_y = opts[other_span].x
            else:
                this_span += 1
                this_x, this_y = pts[this_span].x, pts[this_span].y
            result.append(this_x, other.eval(this_y, other_span), eps)
        return result

    def map(self, func: Callable[[float, float], object]) -> None:
        """Call func(x, y) at every control point."""
        for p in self._points:
            func(p.x, p.y)

    @staticmethod
    def map2(pwl0: Pwl, pwl1: Pwl, func: Callable[[float, float, float], object]) -> None:
        """Call func(x, y0, y1) wherever either function has a control point."""
        p0, p1 = pwl0._points, pwl1._points
        span0 = span1 = 0
        x = min(p0[0].x, p1[0].x)
        func(x, pwl0.eval(x, span0), pwl1.eval(x, span1))
        while span0 < len(p0) - 1 or span1 < len(p1) - 1:
            if span0 == len(p0) - 1:
                span1 += 1
                x = p1[span1].x
            elif span1 == len(p1) - 1:
                span0 += 1
                x = p0[span0].x
            elif p0[span0 + 1].x > p1[span1 + 1].x:
                span1 += 1
                x = p1[span1].x
            else:
                span0 += 1
                x = p0[span0].x
            func(x, pwl0.eval(x, span0), pwl1.eval(x, span1))

    @staticmethod
    def combine(
        pwl0: Pwl,
        pwl1: Pwl,
        func: Callable[[float, float, float], float],
        eps: float = DEFAULT_EPS,
    ) -> Pwl:
        """New function with y = func(x, y0, y1) at every knot of either input."""
        result = Pwl()

        def add(x: float, y0: float, y1: float) -> None:
            result.append(x, func(x, y0, y1), eps)

        Pwl.map2(pwl0, pwl1, add)
        return result

    def match_domain(self, domain: Interval, clip: bool = True, eps: float = DEFAULT_EPS) -> None:
        """Extend to cover at least ``domain``, either flat (clip) or by extrapolation."""
        start_x = self._points[0].x if clip else domain.start
        value, _ = self.eval_with_span(start_x, 0)
        self.prepend(domain.start, value, eps)
        span = len(self._points) - 2
        end_x = self._points[-1].x if clip else domain.end
        value, _ = self.eval_with_span(end_x, span)
        self.append(domain.end, value, eps)

    def __imul__(self, factor: float) -> Pwl:
        self._points = [Point(p.x, p.y * factor) for p in self._points]
        return self

    def generate_lut(self, dtype: Callable[[float], object] = float) -> list:
        """Values at 0, 1, ... up to the end of the domain, converted by dtype."""
        end = int(self.domain().end + 1)
        span = 0
        lut = []
        for x in range(end):
            value, span = self.eval_with_span(x, span)
            lut.append(dtype(value))
        return lut

    def debug(self, file: TextIO | None = None) -> None:
        """Print the control points."""
        out = file if file is not None else sys.stderr
        out.write("Pwl {\n")
        for p in self._points:
            out.write("\t(%g, %g)\n" % (p.x, p.y))
        out.write("}\n")