"""Stackyard deployment engine.

This package provides the deployment pipeline: source fetching, Dockerfile
generation, image building and publishing, and stack reconciliation.
"""

from stackyard.deploy.base import BuildResult, ImageBuilder, Reconciler, SourceFetcher
from stackyard.deploy.builder import ContainerBuilder, get_image_labels
from stackyard.deploy.catalog import AppCatalog
from stackyard.deploy.dockerfile import generate_dockerfile, write_build_files
from stackyard.deploy.fetcher import GitSourceFetcher
from stackyard.deploy.pipeline import DeploymentJob, JobHandle, PipelineController
from stackyard.deploy.reconciler import StackReconciler

__all__ = [
    "AppCatalog",
    "BuildResult",
    "ContainerBuilder",
    "DeploymentJob",
    "GitSourceFetcher",
    "ImageBuilder",
    "JobHandle",
    "PipelineController",
    "Reconciler",
    "SourceFetcher",
    "StackReconciler",
    "generate_dockerfile",
    "get_image_labels",
    "write_build_files",
]
