import os
import subprocess
from pathlib import Path

# Local file:// submodule URLs are refused by default since git 2.38.1
GIT_ENV = dict(os.environ, GIT_CONFIG_PARAMETERS="'protocol.file.allow'='always'")


def run(cmd, cwd=None):
    print(f"[{cwd or '.'}]$ {cmd}")
    subprocess.check_call(cmd, shell=True, cwd=cwd, env=GIT_ENV)


def git_init(path, name):
    path.mkdir(parents=True, exist_ok=True)
    run("git init", cwd=path)
    (path / "README.md").write_text(f"# {name}\n")
    run("git add README.md", cwd=path)
    run(f'git commit -m "Initial commit in {name}"', cwd=path)


def git_commit_change(path, filename, message):
    with open(path / filename, "a") as f:
        f.write(message + "\n")
    run(f"git add {filename}", cwd=path)
    run(f'git commit -m "{message}"', cwd=path)


def record_submodule_tip(child_repo_path, parent_repo_path, submodule_relpath, message):
    """Move the parent's gitlink to the child's current HEAD and commit it."""
    new_commit = subprocess.check_output(
        ["git", "-C", str(child_repo_path), "rev-parse", "HEAD"], text=True
    ).strip()
    submodule_abs_path = parent_repo_path / submodule_relpath
    run("git fetch", cwd=submodule_abs_path)
    run(f"git checkout -q {new_commit}", cwd=submodule_abs_path)
    run(f"git add {submodule_relpath}", cwd=parent_repo_path)
    run(f'git commit -m "{message}"', cwd=parent_repo_path)


# --- Setup base paths ---
base = Path("submodule-sync-playground").absolute()
if base.exists():
    run("rm -rf submodule-sync-playground", cwd=base.parent)
base.mkdir()

shared_header = base / "upstream" / "shared-header"
common_src = base / "upstream" / "common-src"
main_repo = base / "upstream" / "main-repo"
workspace = base / "workspace"

# --- Upstream: main-repo -> common-src -> shared-header ---
git_init(shared_header, "shared-header")
git_commit_change(shared_header, "shared.txt", "shared-header: initial data")

git_init(common_src, "common-src")
run("git submodule add ../shared-header shared-header", cwd=common_src)
run('git commit -m "Add shared-header submodule"', cwd=common_src)

git_init(main_repo, "main-repo")
run("git submodule add ../common-src common-src", cwd=main_repo)
run('git commit -m "Add common-src submodule"', cwd=main_repo)

# --- A clone whose submodules are not yet checked out ---
run(f"git clone -q {main_repo} {workspace}", cwd=base)

# --- Upstream moves on; the workspace will be behind after a pull ---
for i in range(1, 3):
    git_commit_change(shared_header, "shared.txt", f"shared-header: change {i}")
    run("git submodule update --init", cwd=common_src)
    record_submodule_tip(shared_header, common_src, "shared-header", f"Bump shared-header ({i})")
    run("git submodule update --init", cwd=main_repo)
    record_submodule_tip(common_src, main_repo, "common-src", f"Bump common-src ({i})")

print(f"\nPlayground created at {base}")
print("Upstream structure:\n - main-repo\n   - common-src\n     - shared-header")
print(f"\nTry:\n  cd {workspace}")
print("  submodule-sync update --init --recursive")
print("  git pull && submodule-sync update --recursive")
