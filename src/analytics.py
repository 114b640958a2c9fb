# Analytics module

# src/analytics.py

import logging
import os
from datetime import datetime
from pathlib import Path

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import pandas as pd
import seaborn as sns
from google.cloud import storage

from src.db import get_patient_records
from src.demographics import generate_demographic_report
from src.pivot import PIVOT_COLUMNS, generate_pivot_data, pivot_to_dataframe

# Set style for better-looking plots
sns.set_style("whitegrid")
plt.rcParams['figure.figsize'] = (12, 8)

# --------------------------------------------------
# CONFIG
# --------------------------------------------------

# Figures directory
FIGURES_DIR = os.getenv(
    "FIGURES_DIR",
    os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), "reports", "figures"),
)

# GCS Configuration
BUCKET_NAME = os.getenv("GCS_BUCKET")
PROCESSED_ANALYTICS_PREFIX = "processed_analytics"

FIGURE_DPI = 300

DEMOGRAPHIC_DIMENSIONS = ("age_range", "gender", "race", "ethnicity")

# --------------------------------------------------
# HELPERS
# --------------------------------------------------

def _slug(text: str) -> str:
    return "".join(c if c.isalnum() else "_" for c in text.lower()).strip("_")


def _save_figure(name: str, output_dir: str = None) -> str:
    output_dir = output_dir or FIGURES_DIR
    os.makedirs(output_dir, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
    path = os.path.join(output_dir, f"{_slug(name)}_{timestamp}.png")
    plt.tight_layout()
    plt.savefig(path, dpi=FIGURE_DPI, bbox_inches='tight')
    plt.close()
    logging.info(f"✅ Saved {os.path.basename(path)}")
    return path


def _top_rows(df: pd.DataFrame, top_n: int) -> pd.DataFrame:
    totals = df.sum(axis=1).sort_values(ascending=False)
    return df.loc[totals.index[:top_n]]

# --------------------------------------------------
# VISUALIZATIONS
# --------------------------------------------------

def plot_bar_chart(pivot: dict, title: str, top_n: int = 20, output_dir: str = None):
    """
    Horizontal bar chart of total counts per pivot row (most frequent on top).
    Returns the saved path, or None when the pivot is empty.
    """
    df = pivot_to_dataframe(pivot)
    if df.empty:
        logging.warning(f"⚠️ No data for bar chart '{title}'")
        return None

    totals = df.sum(axis=1).sort_values(ascending=False).head(top_n).iloc[::-1]
    plt.figure(figsize=(12, max(4, 0.4 * len(totals))))
    plt.barh(totals.index, totals.values, color=sns.color_palette("husl", len(totals)))
    plt.xlabel('Number of Mentions')
    plt.title(title)
    plt.grid(axis='x', alpha=0.3)
    return _save_figure(title, output_dir)


def pie_slices(counts: dict, top_n: int = 8) -> pd.Series:
    """Top categories by count; the remainder is folded into "Other"."""
    series = pd.Series(counts, dtype=float)
    series = series[series > 0].sort_values(ascending=False)
    if len(series) > top_n:
        other = series.iloc[top_n:].sum()
        series = series.iloc[:top_n].copy()
        series["Other"] = series.get("Other", 0) + other
    return series


def plot_pie_chart(counts: dict, title: str, top_n: int = 8, output_dir: str = None):
    """Pie chart of the top categories, the remainder grouped as 'Other'."""
    series = pie_slices(counts, top_n)
    if series.empty:
        logging.warning(f"⚠️ No data for pie chart '{title}'")
        return None

    plt.figure(figsize=(10, 10))
    plt.pie(series.values, labels=series.index, autopct='%1.1f%%', startangle=90,
            colors=sns.color_palette("Set3", len(series)))
    plt.title(title)
    plt.axis('equal')
    return _save_figure(title, output_dir)


def plot_heatmap(pivot: dict, title: str, top_n: int = 30, output_dir: str = None):
    df = pivot_to_dataframe(pivot)
    if df.empty:
        logging.warning(f"⚠️ No data for heatmap '{title}'")
        return None

    df = _top_rows(df, top_n)
    plt.figure(figsize=(max(10, 0.6 * len(df.columns)), max(6, 0.35 * len(df))))
    sns.heatmap(df, annot=len(df.columns) <= 20, fmt='d', cmap='YlOrRd',
                cbar_kws={'label': 'Mentions'})
    plt.title(title)
    plt.xlabel('Date of Service')
    plt.ylabel('')
    return _save_figure(title, output_dir)


def plot_bubble_chart(pivot: dict, title: str, top_n: int = 30, output_dir: str = None):
    """
    One bubble per (row, date) with area proportional to the count.
    """
    df = _top_rows(pivot_to_dataframe(pivot), top_n) if pivot.get("rows") else pd.DataFrame()
    if df.empty:
        logging.warning(f"⚠️ No data for bubble chart '{title}'")
        return None

    points = df.reset_index().melt(id_vars="index", var_name="date", value_name="count")
    points = points[points["count"] > 0]
    max_count = points["count"].max()

    plt.figure(figsize=(max(10, 0.6 * len(df.columns)), max(6, 0.35 * len(df))))
    plt.scatter(points["date"], points["index"], s=points["count"] / max_count * 800,
                c=points["count"], cmap='viridis', alpha=0.6, edgecolors='black', linewidth=0.5)
    plt.colorbar(label='Mentions')
    plt.xticks(rotation=45, ha='right')
    plt.xlabel('Date of Service')
    plt.title(title)
    plt.grid(alpha=0.3)
    return _save_figure(title, output_dir)


def plot_demographic_distribution(report: dict, dimension: str, output_dir: str = None):
    counts = report.get(f"{dimension}_distribution") or {}
    if not counts:
        logging.warning(f"⚠️ No {dimension} data in demographic report")
        return None

    series = pd.Series(counts).sort_values(ascending=False)
    label = dimension.replace("_", " ").title()
    plt.figure(figsize=(10, 6))
    plt.bar(series.index, series.values, color=sns.color_palette("husl", len(series)))
    plt.xlabel(label)
    plt.ylabel('Number of Patients')
    plt.title(f'Patient Distribution by {label}')
    plt.xticks(rotation=45, ha='right')
    plt.grid(axis='y', alpha=0.3)
    return _save_figure(f"demographics_{dimension}", output_dir)


def plot_zip_distribution(counts: dict, top_n: int = 25, output_dir: str = None):
    """Patient counts per ZIP code."""
    if not counts:
        logging.warning("⚠️ No ZIP code data to plot")
        return None

    series = pd.Series(counts).sort_values(ascending=False).head(top_n)
    plt.figure(figsize=(14, 6))
    plt.bar(series.index.astype(str), series.values, color='steelblue')
    plt.xlabel('ZIP Code')
    plt.ylabel('Number of Patients')
    plt.title('Patients by ZIP Code')
    plt.xticks(rotation=45, ha='right')
    plt.grid(axis='y', alpha=0.3)
    return _save_figure("patients_by_zip_code", output_dir)

# --------------------------------------------------
# EXPORT
# --------------------------------------------------

def export_pivot_csv(pivot: dict, path: str) -> str:
    df = pivot_to_dataframe(pivot)
    df.index.name = "value"
    df.to_csv(path)
    logging.info(f"📄 Exported {len(df)} pivot rows to {path}")
    return path


def export_pivot_excel(pivot: dict, path: str, sheet_name: str = "pivot") -> str:
    df = pivot_to_dataframe(pivot)
    df.index.name = "value"
    df.to_excel(path, sheet_name=sheet_name)
    logging.info(f"📄 Exported {len(df)} pivot rows to {path}")
    return path

# --------------------------------------------------
# UPLOAD FIGURES TO GCS
# --------------------------------------------------

def upload_figures_to_gcs(paths: list = None, date_partition=None, time_partition=None) -> int:
    """
    Upload figures to the GCS_BUCKET bucket partitioned by date and time.

    Args:
        paths: PNG files to upload. If None, every PNG in FIGURES_DIR.
        date_partition: Date string in YYYY-MM-DD format. If None, uses today's date.
        time_partition: Time string in HHMMSS format. If None, uses current time.

    Returns the number of files uploaded.
    """
    if not BUCKET_NAME:
        logging.warning("⚠️ GCS_BUCKET not set, skipping figure upload")
        return 0

    if date_partition is None:
        date_partition = datetime.now().strftime("%Y-%m-%d")

    if time_partition is None:
        time_partition = datetime.now().strftime("%H%M%S")

    figure_files = [Path(p) for p in paths] if paths is not None else list(Path(FIGURES_DIR).glob("*.png"))
    if not figure_files:
        logging.warning(f"No figure files found in {FIGURES_DIR}")
        return 0

    client = storage.Client()
    bucket = client.bucket(BUCKET_NAME)

    uploaded_count = 0
    failed_count = 0

    # processed_analytics/YYYY-MM-DD/HHMMSS/
    partition_path = f"{PROCESSED_ANALYTICS_PREFIX}/{date_partition}/{time_partition}"
    logging.info(f"Uploading {len(figure_files)} figures to gs://{BUCKET_NAME}/{partition_path}/")

    for figure_file in figure_files:
        try:
            blob = bucket.blob(f"{partition_path}/{figure_file.name}")
            blob.upload_from_filename(str(figure_file), content_type="image/png")
            uploaded_count += 1
            logging.info(f"  ✅ Uploaded: {figure_file.name}")
        except Exception as e:
            failed_count += 1
            logging.error(f"  ❌ Failed to upload {figure_file.name}: {e}")

    logging.info(f"📤 Upload complete: {uploaded_count} successful, {failed_count} failed")
    return uploaded_count

# --------------------------------------------------
# MAIN PIPELINE
# --------------------------------------------------

def generate_all_charts(user_id: int = None, output_dir: str = None, upload: bool = False) -> list:
    """
    Render every pivot as bar, heatmap and bubble chart, plus the category
    pie and demographic charts. Returns the saved figure paths.
    """
    paths = []

    for pivot_type in PIVOT_COLUMNS:
        logging.info(f"Building {pivot_type} pivot...")
        pivot = generate_pivot_data(pivot_type, user_id=user_id)
        label = pivot_type.upper() if pivot_type == "hrsn" else pivot_type.title()
        paths.append(plot_bar_chart(pivot, f"Top {label} Mentions", output_dir=output_dir))
        paths.append(plot_heatmap(pivot, f"{label} Mentions by Date", output_dir=output_dir))
        paths.append(plot_bubble_chart(pivot, f"{label} Bubble Chart", output_dir=output_dir))

        if pivot_type == "category":
            totals = pivot_to_dataframe(pivot).sum(axis=1).to_dict() if pivot["rows"] else {}
            paths.append(plot_pie_chart(totals, "Diagnostic Category Share", output_dir=output_dir))

    logging.info("Building demographic report...")
    report = generate_demographic_report(get_patient_records(user_id=user_id))
    for dimension in DEMOGRAPHIC_DIMENSIONS:
        paths.append(plot_demographic_distribution(report, dimension, output_dir=output_dir))
    paths.append(plot_zip_distribution(report["zip_code_distribution"], output_dir=output_dir))

    paths = [p for p in paths if p]
    logging.info(f"📊 {len(paths)} charts saved to {output_dir or FIGURES_DIR}")

    if upload:
        upload_figures_to_gcs(paths)

    return paths
