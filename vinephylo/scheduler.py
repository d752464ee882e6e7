"""Learning-rate, batch-size and gradient-clipping schedule for stochastic optimisation."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional


@dataclass
class SchedMetrics:
    """Measurements from the previous optimisation step."""

    grad_norm: float = 0.0


@dataclass
class SchedDirectives:
    """What the optimiser should do on the coming step."""

    lr: float
    m: int
    clip_norm: float
    resample_sites: bool
    full_grad_now: bool


@dataclass
class SchedState:
    """Mutable scheduler state carried between steps."""

    t: int
    m_t: int
    persist_left: int
    ema_gnorm: float
    lr_t: float


@dataclass
class Scheduler:
    """Schedule that grows the site subsample and adapts learning rate and clipping."""

    n_sites: int
    init_subsample: int = 0
    inc_every: int = 0
    target_lr: float = 0.01
    persist_k: int = 1
    fullgrad_every: int = 0
    clip_warmup: int = 0
    lr_alpha: float = 0.5
    tau_full: float = 0.95
    clip_max_norm: float = 7.0
    adaptive_clip: bool = True
    clip_factor: float = 2.0
    clip_beta: float = 0.98
    t_total: int = 400

    def __post_init__(self) -> None:
        if self.n_sites <= 0:
            raise ValueError("n_sites must be positive")

    def new_state(self) -> SchedState:
        """Return a fresh state derived from this configuration."""
        if self.init_subsample > 0:
            m_t = self.init_subsample
        else:
            m_t = min(self.n_sites, 256)
        return SchedState(
            t=0,
            m_t=m_t,
            persist_left=self.persist_k if self.persist_k > 0 else 1,
            ema_gnorm=0.0,
            lr_t=self.target_lr,
        )

    def step(self, state: SchedState, metrics: Optional[SchedMetrics] = None) -> SchedDirectives:
        """Advance the schedule by one tick, using metrics from the previous step."""
        if metrics is not None and metrics.grad_norm > 0:
            if state.ema_gnorm == 0.0:
                state.ema_gnorm = metrics.grad_norm
            else:
                state.ema_gnorm = (self.clip_beta * state.ema_gnorm
                                   + (1.0 - self.clip_beta) * metrics.grad_norm)

        n = self.n_sites
        if self.inc_every > 0 and state.t > 0 and state.t % self.inc_every == 0:
            new_m = state.m_t * 2
            if new_m > n:
                new_m = state.m_t + (n - state.m_t) // 2
            new_m = max(new_m, state.m_t + 1)
            state.m_t = min(new_m, n)

        tau_full = self.tau_full if self.tau_full > 0.0 else 0.95
        frac = max(state.m_t / n, 1e-12)
        full_mode = frac >= tau_full or state.m_t >= n
        if full_mode:
            state.m_t = n
            frac = 1.0

        alpha = self.lr_alpha if self.lr_alpha > 0 else 0.5
        if full_mode:
            state.lr_t = self.target_lr
        else:
            state.lr_t = self.target_lr * frac ** alpha
            if self.t_total > 0:
                cosine = 0.5 * (1.0 + math.cos(math.pi * state.t / self.t_total))
                state.lr_t *= 0.9 + 0.1 * cosine

        resample = False
        if not full_mode:
            state.persist_left -= 1
            if state.persist_left <= 0:
                resample = True
                state.persist_left = self.persist_k if self.persist_k > 0 else 1

        clip = 0.0
        warmed = self.clip_warmup <= 0 or state.t >= self.clip_warmup
        if self.adaptive_clip and state.ema_gnorm > 0.0 and warmed:
            clip = self.clip_factor * state.ema_gnorm
        if self.clip_max_norm > 0.0:
            clip = max(clip, self.clip_max_norm) if clip > 0.0 else self.clip_max_norm

        if full_mode:
            full_grad = True
        else:
            full_grad = (self.fullgrad_every > 0 and state.t > 0
                         and state.t % self.fullgrad_every == 0)

        directives = SchedDirectives(
            lr=state.lr_t,
            m=state.m_t,
            clip_norm=clip,
            resample_sites=resample,
            full_grad_now=full_grad,
        )
        state.t += 1
        return directives