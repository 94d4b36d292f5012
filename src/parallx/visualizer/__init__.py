"""Visualizer - Rich terminal views for plans and execution reports."""

from .plan_progress import render_plan_tree, render_report, render_report_list

__all__ = [
	"render_plan_tree",
	"render_report",
	"render_report_list",
]
