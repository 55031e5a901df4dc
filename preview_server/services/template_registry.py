# preview_server/services/template_registry.py
"""
Template Registry
- Writes the baseline Vite + React project into the template root once, at startup
- Runs a single `npm install` there so every workspace starts with node_modules
- Freezes the written files into a read-only snapshot (path -> bytes)
"""

import asyncio
import json
import logging
import shutil
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Mapping, Optional

from preview_server.services.command_runner import CommandRunner
from preview_server.services.errors import TemplateInitError

logger = logging.getLogger("preview-server.template")

INDEX_HTML = """<!DOCTYPE html>
<html lang="en">
  <head>
    <meta charset="UTF-8">
    <meta name="viewport" content="width=device-width, initial-scale=1.0">
    <title>Preview</title>
  </head>
  <body>
    <div id="root"></div>
    <script type="module" src="./src/main.tsx"></script>
  </body>
</html>"""

MAIN_TSX = """import { StrictMode } from 'react';
import { createRoot } from 'react-dom/client';
import App from './App';
import './styles.css';

const root = document.getElementById('root');
if (root) {
  createRoot(root).render(
    <StrictMode>
      <App />
    </StrictMode>
  );
}"""

APP_TSX = """import React from 'react';

function App() {
  return (
    <div className="min-h-screen bg-gray-100 p-8">
      <div className="max-w-4xl mx-auto">
        <h1 className="text-3xl font-bold mb-4">Welcome to the App</h1>
      </div>
    </div>
  );
}

export default App;"""

STYLES_CSS = """@tailwind base;
@tailwind components;
@tailwind utilities;"""

VITE_CONFIG_TS = """import { defineConfig } from 'vite';
import react from '@vitejs/plugin-react';
import path from 'path';

export default defineConfig({
  plugins: [react()],
  build: {
    outDir: 'dist',
    sourcemap: true
  },
  resolve: {
    alias: {
      '@': path.resolve(__dirname, './src')
    }
  }
});"""

PACKAGE_JSON = {
    "name": "preview",
    "private": True,
    "version": "0.0.0",
    "type": "module",
    "scripts": {
        "dev": "vite",
        "build": "vite build",
        "preview": "vite preview",
    },
    "dependencies": {
        "react": "^18.2.0",
        "react-dom": "^18.2.0",
        "react-router-dom": "^6.21.1",
        "lucide-react": "^0.344.0",
    },
    "devDependencies": {
        "@types/react": "^18.2.0",
        "@types/react-dom": "^18.2.0",
        "@vitejs/plugin-react": "^4.0.0",
        "typescript": "^5.0.2",
        "vite": "^5.0.0",
        "autoprefixer": "^10.4.13",
        "postcss": "^8.4.49",
        "tailwindcss": "^3.4.17",
    },
}

TSCONFIG_JSON = {
    "compilerOptions": {
        "target": "ESNext",
        "lib": ["DOM", "DOM.Iterable", "ESNext"],
        "module": "ESNext",
        "skipLibCheck": True,
        "moduleResolution": "bundler",
        "allowImportingTsExtensions": True,
        "resolveJsonModule": True,
        "isolatedModules": True,
        "noEmit": True,
        "jsx": "react-jsx",
        "strict": True,
        "noUnusedLocals": True,
        "noUnusedParameters": True,
        "noFallthroughCasesInSwitch": True,
        "baseUrl": ".",
    },
    "include": ["src"],
    "references": [{"path": "./tsconfig.node.json"}],
}

TSCONFIG_NODE_JSON = {
    "compilerOptions": {
        "composite": True,
        "skipLibCheck": True,
        "module": "ESNext",
        "moduleResolution": "bundler",
        "allowSyntheticDefaultImports": True,
    },
    "include": ["vite.config.ts"],
}

BASE_FILES: Dict[str, str] = {
    "index.html": INDEX_HTML,
    "src/main.tsx": MAIN_TSX,
    "src/App.tsx": APP_TSX,
    "src/styles.css": STYLES_CSS,
    "package.json": json.dumps(PACKAGE_JSON, indent=2),
    "tsconfig.json": json.dumps(TSCONFIG_JSON, indent=2),
    "tsconfig.node.json": json.dumps(TSCONFIG_NODE_JSON, indent=2),
    "vite.config.ts": VITE_CONFIG_TS,
}


class TemplateRegistry:
    def __init__(
            self,
            template_dir: Path,
            runner: CommandRunner,
            npm_bin: str = "npm",
            install_timeout: Optional[float] = None,
            files: Optional[Mapping[str, str]] = None,
    ):
        self.template_dir = template_dir
        self.runner = runner
        self.npm_bin = npm_bin
        self.install_timeout = install_timeout
        self.files = dict(files if files is not None else BASE_FILES)
        self._snapshot: Optional[Mapping[str, bytes]] = None

    @property
    def ready(self) -> bool:
        return self._snapshot is not None

    def _write_files(self) -> Dict[str, bytes]:
        written: Dict[str, bytes] = {}
        for rel_path, content in self.files.items():
            target = self.template_dir / rel_path
            data = content.encode("utf-8")
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(data)
            except OSError as e:
                raise TemplateInitError(f"Failed to write template file {rel_path}", details=str(e)) from e
            written[rel_path] = data
            logger.info(f"Created template file: {rel_path}")
        return written

    async def initialize(self) -> None:
        logger.info(f"Initializing base template in {self.template_dir}")
        self._snapshot = None

        written = await asyncio.to_thread(self._write_files)

        logger.info("Installing base dependencies")
        result = await self.runner.run([self.npm_bin, "install"], cwd=self.template_dir, timeout=self.install_timeout)
        if not result.ok:
            raise TemplateInitError(
                f"Base template install failed (exit {result.exit_status})",
                details=result.stderr,
            )

        self._snapshot = MappingProxyType(written)
        logger.info("Base template initialized successfully")

    def skeleton(self) -> Mapping[str, bytes]:
        if self._snapshot is None:
            raise RuntimeError("Template registry is not initialized")
        return self._snapshot

    def copy_into(self, dest: Path) -> None:
        """Copy the template root (installed dependencies included) into dest."""
        self.skeleton()
        shutil.copytree(self.template_dir, dest, symlinks=True, dirs_exist_ok=True)
