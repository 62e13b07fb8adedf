"""Static configuration-file signatures consumed by the stack detector.

Three tiers, strongest first:

* ``MARKER_SIGNATURES`` - a framework's or tool's own config file.
* ``DEPENDENCY_SIGNATURES`` - declared dependencies in a manifest; each entry is
  one rule, and the first dependency in its list that is present wins.
* ``DIRECTORY_SIGNATURES`` - weak layout heuristics.

Patterns are matched case-sensitively against root entries; directories carry
a trailing ``/``.
"""

from __future__ import annotations

MARKER_SIGNATURES: tuple[tuple[str, str, str], ...] = (
    # frontend / full-stack frameworks
    ("next.config.*", "frontend_framework", "Next.js"),
    ("nuxt.config.*", "frontend_framework", "Nuxt"),
    ("remix.config.*", "frontend_framework", "Remix"),
    ("astro.config.*", "frontend_framework", "Astro"),
    ("gatsby-config.*", "frontend_framework", "Gatsby"),
    ("angular.json", "frontend_framework", "Angular"),
    ("svelte.config.*", "frontend_framework", "Svelte"),
    ("vue.config.*", "frontend_framework", "Vue"),
    # backend frameworks
    ("nest-cli.json", "backend_framework", "NestJS"),
    ("manage.py", "backend_framework", "Django"),
    ("artisan", "backend_framework", "Laravel"),
    # languages
    ("tsconfig.json", "language", "TypeScript"),
    ("go.mod", "language", "Go"),
    ("Cargo.toml", "language", "Rust"),
    ("pyproject.toml", "language", "Python"),
    ("requirements.txt", "language", "Python"),
    ("setup.py", "language", "Python"),
    ("Pipfile", "language", "Python"),
    ("composer.json", "language", "PHP"),
    ("Gemfile", "language", "Ruby"),
    ("pom.xml", "language", "Java"),
    ("build.gradle", "language", "Java"),
    ("build.gradle.kts", "language", "Kotlin"),
    ("*.csproj", "language", "C#"),
    # orm
    ("prisma/schema.prisma", "orm", "Prisma"),
    ("drizzle.config.*", "orm", "Drizzle"),
    ("ormconfig.*", "orm", "TypeORM"),
    # testing
    ("vitest.config.*", "test_framework", "Vitest"),
    ("jest.config.*", "test_framework", "Jest"),
    ("pytest.ini", "test_framework", "pytest"),
    ("karma.conf.*", "test_framework", "Karma"),
    ("playwright.config.*", "e2e_framework", "Playwright"),
    ("cypress.config.*", "e2e_framework", "Cypress"),
    # styling / build
    ("tailwind.config.*", "styling", "Tailwind CSS"),
    ("vite.config.*", "build_tool", "Vite"),
    ("webpack.config.*", "build_tool", "Webpack"),
    ("turbo.json", "build_tool", "Turborepo"),
    ("rollup.config.*", "build_tool", "Rollup"),
    # infrastructure
    ("Dockerfile", "container", "Docker"),
    ("docker-compose.yml", "container", "Docker"),
    ("docker-compose.yaml", "container", "Docker"),
    ("compose.yaml", "container", "Docker"),
    ("skaffold.yaml", "orchestration", "Kubernetes"),
    ("kustomization.yaml", "orchestration", "Kubernetes"),
    ("Chart.yaml", "orchestration", "Kubernetes"),
    ("*.tf", "iac", "Terraform"),
    (".terraform.lock.hcl", "iac", "Terraform"),
    ("Pulumi.yaml", "iac", "Pulumi"),
    ("cdk.json", "iac", "AWS CDK"),
    ("cdk.json", "hosting", "AWS"),
    ("serverless.yml", "hosting", "AWS"),
    ("samconfig.toml", "hosting", "AWS"),
    ("vercel.json", "hosting", "Vercel"),
    ("netlify.toml", "hosting", "Netlify"),
    ("wrangler.toml", "hosting", "Cloudflare"),
    ("fly.toml", "hosting", "Fly.io"),
    (".github/workflows/", "ci", "GitHub Actions"),
    (".gitlab-ci.yml", "ci", "GitLab CI"),
    (".circleci/", "ci", "CircleCI"),
    ("Jenkinsfile", "ci", "Jenkins"),
    ("azure-pipelines.yml", "ci", "Azure Pipelines"),
    ("nginx.conf", "web_server", "Nginx"),
    ("Caddyfile", "web_server", "Caddy"),
)

# (manifest kind, category, ordered (dependency, technology) choices)
DEPENDENCY_SIGNATURES: tuple[tuple[str, str, tuple[tuple[str, str], ...]], ...] = (
    (
        "npm",
        "frontend_framework",
        (
            ("next", "Next.js"),
            ("nuxt", "Nuxt"),
            ("@remix-run/react", "Remix"),
            ("@sveltejs/kit", "SvelteKit"),
            ("astro", "Astro"),
            ("gatsby", "Gatsby"),
            ("@angular/core", "Angular"),
            ("solid-js", "Solid"),
            ("react", "React"),
            ("vue", "Vue"),
            ("svelte", "Svelte"),
        ),
    ),
    (
        "npm",
        "backend_framework",
        (
            ("@nestjs/core", "NestJS"),
            ("fastify", "Fastify"),
            ("express", "Express"),
            ("koa", "Koa"),
            ("hono", "Hono"),
        ),
    ),
    ("npm", "language", (("typescript", "TypeScript"),)),
    (
        "npm",
        "orm",
        (
            ("@prisma/client", "Prisma"),
            ("prisma", "Prisma"),
            ("drizzle-orm", "Drizzle"),
            ("typeorm", "TypeORM"),
            ("sequelize", "Sequelize"),
            ("mongoose", "Mongoose"),
        ),
    ),
    (
        "npm",
        "database",
        (
            ("pg", "PostgreSQL"),
            ("postgres", "PostgreSQL"),
            ("mysql2", "MySQL"),
            ("mysql", "MySQL"),
            ("mongodb", "MongoDB"),
            ("mongoose", "MongoDB"),
            ("better-sqlite3", "SQLite"),
            ("sqlite3", "SQLite"),
            ("ioredis", "Redis"),
            ("redis", "Redis"),
        ),
    ),
    (
        "npm",
        "test_framework",
        (
            ("vitest", "Vitest"),
            ("jest", "Jest"),
            ("mocha", "Mocha"),
            ("jasmine", "Jasmine"),
        ),
    ),
    (
        "npm",
        "e2e_framework",
        (
            ("@playwright/test", "Playwright"),
            ("playwright", "Playwright"),
            ("cypress", "Cypress"),
        ),
    ),
    (
        "npm",
        "styling",
        (
            ("tailwindcss", "Tailwind CSS"),
            ("styled-components", "styled-components"),
            ("@emotion/react", "Emotion"),
            ("sass", "Sass"),
        ),
    ),
    (
        "npm",
        "state_management",
        (
            ("@reduxjs/toolkit", "Redux Toolkit"),
            ("redux", "Redux"),
            ("zustand", "Zustand"),
            ("mobx", "MobX"),
            ("jotai", "Jotai"),
            ("recoil", "Recoil"),
            ("pinia", "Pinia"),
            ("vuex", "Vuex"),
        ),
    ),
    (
        "npm",
        "build_tool",
        (
            ("vite", "Vite"),
            ("webpack", "Webpack"),
            ("turbo", "Turborepo"),
            ("esbuild", "esbuild"),
            ("rollup", "Rollup"),
            ("parcel", "Parcel"),
        ),
    ),
    (
        "python",
        "backend_framework",
        (
            ("django", "Django"),
            ("fastapi", "FastAPI"),
            ("flask", "Flask"),
            ("starlette", "Starlette"),
            ("aiohttp", "aiohttp"),
        ),
    ),
    (
        "python",
        "orm",
        (
            ("sqlmodel", "SQLModel"),
            ("sqlalchemy", "SQLAlchemy"),
            ("tortoise-orm", "Tortoise ORM"),
            ("peewee", "Peewee"),
        ),
    ),
    (
        "python",
        "database",
        (
            ("psycopg", "PostgreSQL"),
            ("psycopg2", "PostgreSQL"),
            ("psycopg2-binary", "PostgreSQL"),
            ("asyncpg", "PostgreSQL"),
            ("pymysql", "MySQL"),
            ("mysqlclient", "MySQL"),
            ("pymongo", "MongoDB"),
            ("motor", "MongoDB"),
            ("redis", "Redis"),
        ),
    ),
    ("python", "test_framework", (("pytest", "pytest"),)),
    (
        "python",
        "e2e_framework",
        (
            ("playwright", "Playwright"),
            ("selenium", "Selenium"),
        ),
    ),
    (
        "go",
        "backend_framework",
        (
            ("github.com/gin-gonic/gin", "Gin"),
            ("github.com/labstack/echo/v4", "Echo"),
            ("github.com/gofiber/fiber/v2", "Fiber"),
            ("github.com/go-chi/chi/v5", "Chi"),
        ),
    ),
    ("go", "orm", (("gorm.io/gorm", "GORM"),)),
    (
        "go",
        "database",
        (
            ("github.com/lib/pq", "PostgreSQL"),
            ("github.com/jackc/pgx/v5", "PostgreSQL"),
            ("go.mongodb.org/mongo-driver", "MongoDB"),
            ("github.com/redis/go-redis/v9", "Redis"),
        ),
    ),
    (
        "cargo",
        "backend_framework",
        (
            ("axum", "Axum"),
            ("actix-web", "Actix Web"),
            ("rocket", "Rocket"),
        ),
    ),
    (
        "cargo",
        "orm",
        (
            ("diesel", "Diesel"),
            ("sea-orm", "SeaORM"),
        ),
    ),
    (
        "cargo",
        "database",
        (
            ("tokio-postgres", "PostgreSQL"),
            ("mongodb", "MongoDB"),
            ("redis", "Redis"),
        ),
    ),
    (
        "composer",
        "backend_framework",
        (
            ("laravel/framework", "Laravel"),
            ("symfony/framework-bundle", "Symfony"),
        ),
    ),
    ("composer", "test_framework", (("phpunit/phpunit", "PHPUnit"),)),
    (
        "ruby",
        "backend_framework",
        (
            ("rails", "Ruby on Rails"),
            ("sinatra", "Sinatra"),
        ),
    ),
    ("ruby", "test_framework", (("rspec", "RSpec"), ("minitest", "Minitest"))),
)

DIRECTORY_SIGNATURES: tuple[tuple[str, str, str], ...] = (
    ("k8s/", "orchestration", "Kubernetes"),
    ("kubernetes/", "orchestration", "Kubernetes"),
    ("helm/", "orchestration", "Kubernetes"),
    ("charts/", "orchestration", "Kubernetes"),
    ("terraform/", "iac", "Terraform"),
    ("nginx/", "web_server", "Nginx"),
    ("cypress/", "e2e_framework", "Cypress"),
    ("__tests__/", "test_framework", "Jest"),
    ("package.json", "language", "JavaScript"),
    ("*.py", "language", "Python"),
    ("*.go", "language", "Go"),
    ("*.rb", "language", "Ruby"),
    ("*.php", "language", "PHP"),
)

# Manifest basename -> manifest kind
MANIFEST_KINDS: dict[str, str] = {
    "package.json": "npm",
    "requirements.txt": "python",
    "requirements-dev.txt": "python",
    "pyproject.toml": "python",
    "Pipfile": "python",
    "go.mod": "go",
    "Cargo.toml": "cargo",
    "composer.json": "composer",
    "Gemfile": "ruby",
}

# Well-known nested paths checked below the root; nothing above the root is read.
NESTED_PATHS: tuple[str, ...] = (
    ".github/workflows/",
    "prisma/schema.prisma",
)
