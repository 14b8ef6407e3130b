import numpy as np
import pandas as pd
import os

def generate_simulated_cohort(output_dir, num_samples=40, num_genes=200, num_groups=10, seed=42):
    """
    Generates a simulated expression cohort for the SPRA pipeline:
      - expression.txt  genes x samples, log-scale values
      - phenotype.txt   one row per sample with a 0/1 'Type' column
      - groups.gmt      overlapping gene groups
    The first group is shifted up and the second down in Type == 1 samples.
    """
    rng = np.random.default_rng(seed)
    os.makedirs(output_dir, exist_ok=True)

    genes = [f"GENE_{i:03d}" for i in range(num_genes)]
    samples = [f"Sample_{i:02d}" for i in range(num_samples)]
    y = np.array([0, 1] * (num_samples // 2) + [0] * (num_samples % 2))

    expr = rng.normal(loc=5.0, scale=1.0, size=(num_genes, num_samples))
    size = num_genes // num_groups
    expr[:size, y == 1] += 1.5
    expr[size:2 * size, y == 1] -= 1.5

    pd.DataFrame(expr, index=genes, columns=samples).to_csv(
        os.path.join(output_dir, "expression.txt"), sep="\t"
    )
    pd.DataFrame({"Sample": samples, "Type": y}).to_csv(
        os.path.join(output_dir, "phenotype.txt"), sep="\t", index=False
    )

    # consecutive groups overlap by a quarter of their size
    step = size - size // 4
    with open(os.path.join(output_dir, "groups.gmt"), "w") as fh:
        for k in range(num_groups):
            members = genes[k * step:k * step + size]
            if members:
                fh.write("\t".join([f"GROUP_{k + 1}", "simulated"] + members) + "\n")

    print(f"Simulated cohort saved to: {output_dir}")
    print(f"Samples: {num_samples} ({int(y.sum())} of Type 1), genes: {num_genes}")

if __name__ == "__main__":
    generate_simulated_cohort(os.path.join("data", "simulated"))
