#!/usr/bin/env python3
"""
Bundle ffmpeg into the macOS Runner app (idempotent)

Ensures, inside Runner.xcodeproj:
1. a Resources group holding a reference to Runner/Resources/ffmpeg
2. a Copy Bundle Resources phase that copies it into the app bundle
3. a Run Script phase that marks the copied binary executable

Running it again against an already configured project changes nothing.
"""

import argparse
import os
import shutil
import sys
import tempfile
from dataclasses import dataclass, field
from pathlib import Path

from pbxproj import XcodeProject
from pbxproj.pbxsections import (
    PBXBuildFile,
    PBXCopyFilesBuildPhase,
    PBXFileReference,
    PBXShellScriptBuildPhase,
)

PROJECT_ROOT = Path(__file__).resolve().parent.parent
DEFAULT_PROJECT = PROJECT_ROOT / "macos" / "Runner.xcodeproj"
DEFAULT_RESOURCE = PROJECT_ROOT / "macos" / "Runner" / "Resources" / "ffmpeg"

DEFAULT_TARGET = "Runner"
DEFAULT_GROUP = "Resources"
DEFAULT_REFERENCE = "Runner/Resources/ffmpeg"
CHMOD_SCRIPT = 'chmod +x "${BUILT_PRODUCTS_DIR}/${CONTENTS_FOLDER_PATH}/Resources/ffmpeg"'
COPY_PHASE_NAME = "Copy Bundle Resources"
SCRIPT_PHASE_NAME = "Make ffmpeg Executable"

SOURCE_ROOT = "SOURCE_ROOT"
# PBXCopyFilesBuildPhase.dstSubfolderSpec for "Resources"
RESOURCES_SUBFOLDER_SPEC = 7


class ConfigureError(Exception):
    """Base error; every subclass aborts the run before anything is saved."""


class MissingResourceError(ConfigureError):
    def __init__(self, path):
        super().__init__(f"{path} does not exist.")
        self.path = path


class ProjectLoadError(ConfigureError):
    pass


class TargetNotFoundError(ConfigureError):
    def __init__(self, name):
        super().__init__(f"target '{name}' not found in project")
        self.name = name


class ProjectSaveError(ConfigureError):
    pass


@dataclass(frozen=True)
class BundleResourceConfig:
    project_path: Path
    resource_path: Path
    target_name: str = DEFAULT_TARGET
    group_path: str = DEFAULT_GROUP
    reference_path: str = DEFAULT_REFERENCE
    chmod_script: str = CHMOD_SCRIPT
    copy_phase_name: str = COPY_PHASE_NAME
    script_phase_name: str = SCRIPT_PHASE_NAME


@dataclass
class ConfigureResult:
    """Which entities this run had to create, and which existing ones it rewrote."""
    created: list[str] = field(default_factory=list)
    updated: list[str] = field(default_factory=list)

    @property
    def changed(self) -> bool:
        return bool(self.created or self.updated)


def find_or_create(candidates, predicate, create):
    """Return (first candidate matching predicate, False) or (create(), True)"""
    for item in candidates:
        if predicate(item):
            return item, False
    return create(), True


def pbxproj_file(project_path) -> Path:
    """Accept either the .xcodeproj bundle or the project.pbxproj inside it"""
    path = Path(project_path)
    if path.suffix == ".xcodeproj" or path.is_dir():
        return path / "project.pbxproj"
    return path


def load_project(project_path):
    path = pbxproj_file(project_path)
    try:
        return XcodeProject.load(str(path))
    except Exception as e:
        raise ProjectLoadError(f"cannot load {path}: {e}") from e


def save_project(project, path):
    """Write to a sibling temp file, then swap it over path in one rename"""
    path = Path(path)
    fd, tmp = tempfile.mkstemp(dir=path.parent, prefix=f".{path.name}.", suffix=".tmp")
    os.close(fd)
    try:
        if path.exists():
            shutil.copymode(path, tmp)
        project.save(tmp)
        os.replace(tmp, path)
    except OSError as e:
        raise ProjectSaveError(f"cannot save project: {e}") from e
    finally:
        if os.path.exists(tmp):
            os.remove(tmp)


def resolve_target(project, name):
    targets = project.objects.get_targets(name)
    if not targets:
        raise TargetNotFoundError(name)
    return targets[0]


def _objects_for(project, keys, isa):
    """Resolve object ids, keeping only those of the given isa"""
    objs = [project.objects[key] for key in keys or []]
    return [obj for obj in objs if obj is not None and obj.isa == isa]


def _group_name(group):
    return group["name"] or group["path"]


def main_group(project):
    root = project.objects[project.rootObject]
    return project.objects[root.mainGroup]


def ensure_group(project, group_path):
    """Walk group_path from the main group, creating missing groups on the way.

    The leaf group's sourceTree is forced to SOURCE_ROOT. Returns
    (group, created, retargeted).
    """
    group = main_group(project)
    created = False
    for segment in [p for p in group_path.split("/") if p]:
        parent = group
        group, segment_created = find_or_create(
            _objects_for(project, parent.children, "PBXGroup"),
            lambda g: _group_name(g) == segment,
            lambda: project.get_or_create_group(segment, parent=parent),
        )
        if segment_created:
            print(f"  ➕ 그룹 '{segment}' 생성")
            created = True
    if not created:
        print(f"  ✅ 그룹 '{group_path}' (이미 있음)")

    retargeted = group["sourceTree"] != SOURCE_ROOT
    if retargeted:
        if not created:
            print(f"  🔧 그룹 '{group_path}' sourceTree: {group['sourceTree']} → {SOURCE_ROOT}")
        group.sourceTree = SOURCE_ROOT
    return group, created, retargeted


def ensure_file_reference(project, group, reference_path):
    def create():
        print(f"  ➕ {reference_path} 를 그룹에 추가 중...")
        file_ref = PBXFileReference.create(reference_path, "<group>")
        project.objects[file_ref.get_id()] = file_ref
        group.add_child(file_ref)
        return file_ref

    file_ref, created = find_or_create(
        _objects_for(project, group.children, "PBXFileReference"),
        lambda f: f["path"] == reference_path,
        create,
    )
    if not created:
        print(f"  ✅ {reference_path} (이미 그룹에 있음)")
    return file_ref, created


def _add_build_phase(project, target, phase):
    project.objects[phase.get_id()] = phase
    target.buildPhases.append(phase.get_id())


def ensure_copy_phase(project, target, name=COPY_PHASE_NAME):
    def is_resources_phase(phase):
        return (phase["name"] == name
                or str(phase["dstSubfolderSpec"]) == str(RESOURCES_SUBFOLDER_SPEC))

    def create():
        print(f"  ➕ '{name}' 빌드 페이즈 생성")
        phase = PBXCopyFilesBuildPhase.create(name=name)
        phase.dstPath = ""
        phase.dstSubfolderSpec = RESOURCES_SUBFOLDER_SPEC
        _add_build_phase(project, target, phase)
        return phase

    phase, created = find_or_create(
        _objects_for(project, target.buildPhases, "PBXCopyFilesBuildPhase"),
        is_resources_phase,
        create,
    )
    if not created:
        print(f"  ✅ '{phase['name'] or name}' 빌드 페이즈 (이미 있음)")
    return phase, created


def ensure_phase_membership(project, phase, file_ref, label):
    """Add a PBXBuildFile for file_ref to phase unless one is already listed"""
    build_files = _objects_for(project, phase.files, "PBXBuildFile")
    if any(bf["fileRef"] == file_ref.get_id() for bf in build_files):
        print(f"  ✅ {label} (이미 복사 페이즈에 있음)")
        return False

    print(f"  ➕ {label} 를 복사 페이즈에 추가 중...")
    build_file = PBXBuildFile.create(file_ref)
    project.objects[build_file.get_id()] = build_file
    phase.files.append(build_file.get_id())
    return True


def ensure_script_phase(project, target, script=CHMOD_SCRIPT, name=SCRIPT_PHASE_NAME):
    def create():
        print(f"  ➕ '{name}' Run Script 페이즈 추가")
        phase = PBXShellScriptBuildPhase.create(script, name=name)
        _add_build_phase(project, target, phase)
        return phase

    phase, created = find_or_create(
        _objects_for(project, target.buildPhases, "PBXShellScriptBuildPhase"),
        lambda p: script in (p["shellScript"] or ""),
        create,
    )
    if not created:
        print("  ✅ Run Script 페이즈가 이미 chmod +x 처리")
    return phase, created


def configure(config: BundleResourceConfig) -> ConfigureResult:
    """Bring the project into the configured state, saving once at the end"""
    if not Path(config.resource_path).exists():
        raise MissingResourceError(config.resource_path)

    print(f"📂 프로젝트 파일: {pbxproj_file(config.project_path)}")
    project = load_project(config.project_path)
    target = resolve_target(project, config.target_name)
    result = ConfigureResult()

    group, created, retargeted = ensure_group(project, config.group_path)
    if created:
        result.created.append("group")
    elif retargeted:
        result.updated.append("group_source_tree")

    file_ref, created = ensure_file_reference(project, group, config.reference_path)
    if created:
        result.created.append("file_reference")

    phase, created = ensure_copy_phase(project, target, config.copy_phase_name)
    if created:
        result.created.append("copy_phase")

    if ensure_phase_membership(project, phase, file_ref, config.reference_path):
        result.created.append("build_file")

    _, created = ensure_script_phase(
        project, target, config.chmod_script, config.script_phase_name)
    if created:
        result.created.append("script_phase")

    save_project(project, pbxproj_file(config.project_path))
    return result


def parse_args(argv=None):
    parser = argparse.ArgumentParser(
        description="Bundle a resource binary into an Xcode target (idempotent)")
    parser.add_argument("--project", type=Path, default=DEFAULT_PROJECT,
                        help="path to the .xcodeproj (default: %(default)s)")
    parser.add_argument("--resource", type=Path, default=DEFAULT_RESOURCE,
                        help="file that must exist before the project is edited")
    parser.add_argument("--target", default=DEFAULT_TARGET)
    parser.add_argument("--group", default=DEFAULT_GROUP,
                        help="logical group path, '/' separated")
    parser.add_argument("--reference-path", default=DEFAULT_REFERENCE,
                        help="path recorded in the file reference")
    parser.add_argument("--script", default=CHMOD_SCRIPT,
                        help="shell script that must be present in a Run Script phase")
    return parser.parse_args(argv)


def main(argv=None):
    args = parse_args(argv)
    config = BundleResourceConfig(
        project_path=args.project,
        resource_path=args.resource,
        target_name=args.target,
        group_path=args.group,
        reference_path=args.reference_path,
        chmod_script=args.script,
    )

    try:
        result = configure(config)
    except ConfigureError as e:
        print(f"❌ Error: {e}")
        return 1

    if result.changed:
        print("\n✅ 프로젝트 파일 업데이트 완료: ffmpeg 설정됨")
    else:
        print("\n✅ 변경사항 없음 (ffmpeg 이미 설정됨)")
    return 0


if __name__ == "__main__":
    sys.exit(main())
