"""Fit a VAST abundance index on a droplet.

Uses the job ``vast`` from dropjob.toml (see dropjob.toml.example). The
image must contain R with the VAST packages; ``dropjob packages install``
run inside the image builds them.

    dropjob run vast 3_vast_index:fit_index EBS 2019
"""

import subprocess

import dropjob as dj

FIT_SCRIPT = r"""
args <- commandArgs(trailingOnly = TRUE)
library(VAST)
example <- load_example(data_set = args[1])
settings <- make_settings(n_x = 100, Region = example$Region, purpose = "index2", bias.correct = FALSE)
dat <- example$sampling_data
dat <- dat[dat[, "Year"] <= as.integer(args[2]), ]
fit <- fit_model(settings = settings,
                 Lat_i = dat[, "Lat"], Lon_i = dat[, "Lon"], t_i = dat[, "Year"],
                 b_i = dat[, "Catch_KG"], a_i = dat[, "AreaSwept_km2"],
                 working_dir = tempdir())
index <- fit$Report$Index_ctl[1, , 1]
cat(format(index[length(index)], scientific = FALSE))
"""


def fit_index(region: str, year: str) -> float:
    """Runs on the worker: fit VAST with Rscript and return the last index value."""
    proc = subprocess.run(
        ["Rscript", "-e", FIT_SCRIPT, region, year],
        capture_output=True,
        text=True,
        check=True,
    )
    return float(proc.stdout.strip().splitlines()[-1])


@dj.compute
def fit(region: str, year: int) -> float:
    return fit_index(region, str(year))


if __name__ == "__main__":
    runner = dj.resolve_job("vast").runner(logging=dj.LogConfig(level="DEBUG"))

    with runner.provisioned():
        deferreds = [runner.submit(fit("EBS", year)) for year in (2017, 2018, 2019)]
        for year, d in zip((2017, 2018, 2019), deferreds):
            print(year, runner.resolve(d))
