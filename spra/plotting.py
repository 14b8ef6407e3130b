from __future__ import annotations
import matplotlib.pyplot as plt
import seaborn as sns
import pandas as pd
import numpy as np
from pathlib import Path
from typing import Union
import logging

LOGGER = logging.getLogger(__name__)


def plot_cv_errors(cv, output_path: Union[str, Path]):
    """
    Mean cross-validation error against log(lambda), with the selected lambda marked.
    """
    df = pd.DataFrame({
        "log_lambda": np.log(cv.lambdas),
        "mean_error": cv.mean_errors,
        "sd_error": cv.sd_errors,
    })

    plt.figure(figsize=(7, 5))
    sns.lineplot(data=df, x="log_lambda", y="mean_error", marker="o", color="black")
    plt.fill_between(
        df["log_lambda"],
        df["mean_error"] - df["sd_error"],
        df["mean_error"] + df["sd_error"],
        color="grey",
        alpha=0.2,
    )
    plt.axvline(np.log(cv.best_lambda), color="red", linestyle="--",
                label=f"Best lambda = {cv.best_lambda:.4f}")
    plt.xlabel("log(lambda)")
    plt.ylabel("Mean CV Error")
    plt.title("Cross-Validation Error vs. log(lambda)")
    plt.legend(loc="upper right")
    plt.tight_layout()

    plt.savefig(output_path, bbox_inches="tight")
    plt.close()
    LOGGER.info(f"CV error plot saved to: {output_path}")


def plot_coefficients(coefficients: pd.Series, output_path: Union[str, Path], lambda_: float = None):
    """Stem plot of the latent-feature coefficients at the selected lambda."""
    if isinstance(coefficients, pd.DataFrame):
        coefficients = coefficients["coefficients"]

    n = len(coefficients)
    fig_width = max(8, min(n * 0.15, 40))
    plt.figure(figsize=(fig_width, 5))

    x = np.arange(1, n + 1)
    colors = np.where(coefficients.to_numpy() > 0, "firebrick", "steelblue")
    plt.vlines(x, 0, coefficients.to_numpy(), colors=colors, linewidth=2)
    plt.axhline(0, color="black", linewidth=0.5)
    plt.xticks(x, coefficients.index, rotation=90, fontsize=6 if n > 50 else 8)
    plt.xlabel("Features")
    plt.ylabel("Coefficients")
    title = "Coefficients at Best Lambda"
    if lambda_ is not None:
        title += f" ({lambda_:.4f})"
    plt.title(title)
    plt.tight_layout()

    plt.savefig(output_path, bbox_inches="tight")
    plt.close()
    LOGGER.info(f"Coefficient plot saved to: {output_path}")
