"""Plots for fitted meta-analyses and for the biased effect size densities."""

from pathlib import Path

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np

from publipha.ma import MAFit
from publipha.model_spec import Bias, resolve_bias
from publipha.phnorm import dphnorm
from publipha.snorm import dsnorm
from publipha.weights import bin_bounds, check_alpha

BIAS_COLORS = {
    Bias.PUBLICATION_SELECTION: "#D55E00",
    Bias.P_HACKING: "#0072B2",
    Bias.NONE: "#555555",
}


def save_fig(fig: plt.Figure, path: Path, dpi: int = 150) -> None:
    fig.savefig(path, dpi=dpi, bbox_inches="tight", facecolor="white")
    plt.close(fig)
    print(f"  Saved: {path.name}")


def plot_posteriors(fit: MAFit, out_dir: Path) -> Path:
    """Histograms of theta0 and tau, plus eta posterior means per bin."""
    color = BIAS_COLORS[fit.bias]
    has_eta = "eta" in fit.idata.posterior
    n_panels = 3 if has_eta else 2
    fig, axes = plt.subplots(1, n_panels, figsize=(5 * n_panels, 4))

    for ax, var in zip(axes, ("theta0", "tau"), strict=False):
        draws = fit.idata.posterior[var].values.ravel()
        ax.hist(draws, bins=50, color=color, alpha=0.7, density=True)
        ax.axvline(float(np.mean(draws)), color="black", linestyle="--", linewidth=1)
        ax.set_title(f"{var}: mean {np.mean(draws):.3f}", fontsize=11)
        ax.spines["top"].set_visible(False)
        ax.spines["right"].set_visible(False)

    if has_eta:
        ax = axes[2]
        eta = fit.idata.posterior["eta"].values.reshape(-1, fit.alpha.size - 1)
        lo, hi = np.percentile(eta, [2.5, 97.5], axis=0)
        x = np.arange(eta.shape[1])
        mean = eta.mean(axis=0)
        ax.bar(x, mean, color=color, alpha=0.7)
        ax.errorbar(x, mean, yerr=[mean - lo, hi - mean], fmt="none", color="black", capsize=4)
        ax.set_xticks(x)
        ax.set_xticklabels(list(fit.idata.posterior["eta"].coords["bin"].values), fontsize=8)
        ax.set_title("eta: posterior mean, 95% interval", fontsize=11)
        ax.spines["top"].set_visible(False)
        ax.spines["right"].set_visible(False)

    fig.suptitle(f"Posterior — {fit.bias.value}", fontsize=12, fontweight="bold")
    fig.tight_layout()
    path = out_dir / f"posterior_{fit.bias.short_name}.png"
    save_fig(fig, path)
    return path


def plot_density(
    theta0: float,
    tau: float,
    sigma: float,
    alpha,
    eta,
    bias: Bias | str,
    path: Path,
) -> None:
    """Biased effect size density against the underlying normal.

    Dotted vertical lines mark the effect sizes where the p-value crosses a
    cutoff.
    """
    bias = resolve_bias(bias)
    alpha = check_alpha(alpha)
    x = np.linspace(theta0 - 4 * tau, theta0 + 4 * tau, 801)
    underlying = np.exp(-0.5 * ((x - theta0) / tau) ** 2) / (tau * np.sqrt(2 * np.pi))

    match bias:
        case Bias.PUBLICATION_SELECTION:
            density = dsnorm(x, theta0, tau, sigma, alpha, eta=eta)
        case Bias.P_HACKING:
            density = dphnorm(x, theta0, tau, sigma, alpha, eta=eta)
        case _:
            density = underlying

    fig, ax = plt.subplots(figsize=(9, 5))
    ax.plot(x, underlying, color="#888888", linestyle="--", label="Underlying normal")
    ax.plot(x, density, color=BIAS_COLORS[bias], linewidth=2, label=bias.value)

    lower, _ = bin_bounds(sigma, alpha)
    for cut in np.unique(np.abs(lower[np.isfinite(lower)])):
        if 0 < cut and x[0] < cut < x[-1]:
            ax.axvline(cut, color="#bbbbbb", linestyle=":", linewidth=1)
        if 0 < cut and x[0] < -cut < x[-1]:
            ax.axvline(-cut, color="#bbbbbb", linestyle=":", linewidth=1)

    ax.set_xlabel("Effect size")
    ax.set_ylabel("Density")
    ax.set_title(
        f"Effect size density (theta0={theta0}, tau={tau}, sigma={sigma})",
        fontsize=12,
        fontweight="bold",
    )
    ax.legend(fontsize=10)
    ax.spines["top"].set_visible(False)
    ax.spines["right"].set_visible(False)
    fig.tight_layout()
    save_fig(fig, path)
