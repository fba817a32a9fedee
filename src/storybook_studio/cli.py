"""命令行接口"""

import asyncio
from typing import Awaitable, Callable, Optional

import typer
from pydantic import ValidationError
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from .core.batch import BatchReport, GenerationMode
from .core.models import Storybook, TargetAge
from .core.studio import StorybookStudio
from .exceptions import StorybookError
from .services.credentials import CredentialProvider
from .services.gemini_client import GenerationResult
from .services.story_writer import StoryRequest
from .storage.backends import FileStorage
from .utils.config import GenerationPreferences, get_settings
from .utils.log import setup_logging

app = typer.Typer(
    name="storybook",
    help="""儿童绘本工作室 - 调用 Gemini 生成故事、插图、单词卡片和朗读

快速开始:
  storybook create "용감한 토끼" --age 5-7 --style 수채화     # 生成故事
  storybook characters <ID>                                   # 生成角色参考图
  storybook illustrations <ID> --mode sequential              # 生成所有插图
  storybook export <ID>                                       # 导出文本和图片
""",
)
console = Console()


def _studio(yes: bool = True) -> StorybookStudio:
    settings = get_settings()
    setup_logging(settings.log_level)

    def confirm(count: int, seconds: int) -> bool:
        return typer.confirm(f"将生成 {count} 项，预计约 {seconds} 秒，继续吗?", default=True)

    return StorybookStudio(settings, confirm=None if yes else confirm)


def _run(action: Callable[[StorybookStudio], Awaitable[None]], yes: bool = True) -> None:
    """在一个事件循环中执行命令，统一处理错误"""

    async def main() -> None:
        async with _studio(yes) as studio:
            await action(studio)

    try:
        asyncio.run(main())
    except typer.Exit:
        raise
    except StorybookError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)


def _book(studio: StorybookStudio, book_id: str) -> Storybook:
    """取出绘本并从导出目录恢复图片"""
    book = studio.state.get(book_id)
    if book is None:
        console.print(f"[red]找不到绘本: {book_id}[/red]")
        raise typer.Exit(1)
    studio.state.select(book_id)
    studio.restore(book)
    return book


def _check_index(value: int, size: int, label: str) -> int:
    """把从 1 开始的序号转换为下标"""
    if not 1 <= value <= size:
        console.print(f"[red]{label}序号超出范围: {value} (共 {size} 个)[/red]")
        raise typer.Exit(1)
    return value - 1


async def _save_artifacts(studio: StorybookStudio, book: Storybook) -> None:
    result = await studio.export(book)
    console.print(f"[dim]文件已保存到: {result.directory}[/dim]")


def _print_report(title: str, report: BatchReport) -> None:
    style = "green" if not report.failed and not report.cancelled else "yellow"
    console.print(f"[{style}]{title}: {report.summary()}[/{style}]")
    for index, error in sorted(report.failed.items()):
        console.print(f"  [red]#{index + 1}: {error}[/red]")


def _print_result(label: str, result: GenerationResult) -> None:
    if result.success:
        suffix = " (复用已有图片)" if result.reused else ""
        console.print(f"[green]✓ {label}{suffix}[/green]")
    else:
        console.print(f"[red]✗ {label}: {result.error}[/red]")


@app.command()
def create(
    title: str = typer.Argument(..., help="绘本标题"),
    age: TargetAge = typer.Option(TargetAge.PRESCHOOL, "--age", "-a", help="目标年龄段"),
    pages: int = typer.Option(0, "--pages", "-p", help="页数，0 表示自动 (0-30)"),
    style: str = typer.Option("동화풍 수채화", "--style", "-s", help="画风"),
    reference: str = typer.Option("", "--reference", "-r", help="参考内容"),
    model: Optional[str] = typer.Option(None, "--model", "-m", help="文本模型"),
):
    """生成新绘本的故事文本"""
    try:
        request = StoryRequest(
            title=title,
            target_age=age,
            total_pages=pages,
            art_style=style,
            reference_content=reference,
            text_model=model,
        )
    except ValidationError as e:
        console.print(f"[red]参数错误: {e.errors()[0]['msg']}[/red]")
        raise typer.Exit(1)

    console.print(
        Panel(
            f"[bold]标题:[/bold] {title}\n"
            f"[bold]目标年龄:[/bold] {age.value}세\n"
            f"[bold]页数:[/bold] {pages or '自动'}\n"
            f"[bold]画风:[/bold] {style}",
            title="绘本生成配置",
            border_style="blue",
        )
    )

    async def action(studio: StorybookStudio) -> None:
        book = await studio.create_storybook(request)
        await _save_artifacts(studio, book)
        console.print(f"绘本 ID: [bold]{book.id}[/bold]")

    _run(action)


@app.command()
def rewrite(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    reference: str = typer.Option("", "--reference", "-r", help="修改要求或参考内容"),
    pages: Optional[int] = typer.Option(None, "--pages", "-p", help="页数，默认沿用原绘本"),
):
    """保留角色重新生成故事"""

    async def action(studio: StorybookStudio) -> None:
        book = _book(studio, book_id)
        try:
            request = StoryRequest(
                title=book.title,
                target_age=book.target_age,
                total_pages=len(book.pages) if pages is None else pages,
                art_style=book.art_style,
                reference_content=reference,
            )
        except ValidationError as e:
            console.print(f"[red]参数错误: {e.errors()[0]['msg']}[/red]")
            raise typer.Exit(1)
        rewritten = await studio.rewrite_storybook(book, request)
        await _save_artifacts(studio, rewritten)
        console.print(f"[green]《{rewritten.title}》已重新生成 ({len(rewritten.pages)} 页)[/green]")

    _run(action)


@app.command("list")
def list_books():
    """列出所有绘本"""

    async def action(studio: StorybookStudio) -> None:
        if not studio.state.storybooks:
            console.print("[dim]还没有绘本[/dim]")
            return
        table = Table(title="绘本列表")
        table.add_column("ID")
        table.add_column("标题")
        table.add_column("年龄")
        table.add_column("页数", justify="right")
        table.add_column("角色", justify="right")
        for book in studio.state.storybooks:
            table.add_row(book.id, book.title, book.target_age.value, str(len(book.pages)), str(len(book.characters)))
        console.print(table)

    _run(action)


@app.command()
def show(book_id: str = typer.Argument(..., help="绘本 ID")):
    """显示绘本内容"""

    async def action(studio: StorybookStudio) -> None:
        book = _book(studio, book_id)
        console.print(Panel(book.to_text(), title=book.title, border_style="blue"))
        for i, character in enumerate(book.characters, start=1):
            mark = "[green]●[/green]" if character.reference_image else "[dim]○[/dim]"
            console.print(f"{mark} {i}. {character.name} ({character.role}, {character.height_cm}cm)")

    _run(action)


@app.command()
def delete(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    yes: bool = typer.Option(False, "--yes", "-y", help="不再确认"),
):
    """删除绘本"""
    if not yes and not typer.confirm(f"确定删除绘本 {book_id} 吗?"):
        raise typer.Exit()

    async def action(studio: StorybookStudio) -> None:
        if studio.state.get(book_id) is None:
            console.print(f"[red]找不到绘本: {book_id}[/red]")
            raise typer.Exit(1)
        book = studio.state.delete(book_id)
        console.print(f"[green]已删除《{book.title}》[/green]")

    _run(action)


@app.command()
def duplicate(book_id: str = typer.Argument(..., help="绘本 ID")):
    """复制绘本"""

    async def action(studio: StorybookStudio) -> None:
        source = _book(studio, book_id)
        copy = studio.state.duplicate(source.id)
        await _save_artifacts(studio, copy)
        console.print(f"[green]已复制为《{copy.title}》 (ID: {copy.id})[/green]")

    _run(action)


@app.command()
def rename(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    title: str = typer.Argument(..., help="新标题"),
):
    """修改绘本标题"""

    async def action(studio: StorybookStudio) -> None:
        _book(studio, book_id)
        try:
            book = studio.state.rename(book_id, title)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
        console.print(f"[green]标题已修改为《{book.title}》[/green]")

    _run(action)


def _edit(book_id: str, change: Callable[[StorybookStudio, Storybook], str]) -> None:
    """修改绘本内容后重新导出；ValueError 作为输入错误显示"""

    async def action(studio: StorybookStudio) -> None:
        book = _book(studio, book_id)
        try:
            message = change(studio, book)
        except ValueError as e:
            console.print(f"[red]{e}[/red]")
            raise typer.Exit(1)
        await _save_artifacts(studio, book)
        console.print(f"[green]{message}[/green]")

    _run(action)


@app.command("add-character")
def add_character(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    name: str = typer.Argument(..., help="角色名"),
    description: str = typer.Option(..., "--description", "-d", help="外貌描述（英文）"),
    role: str = typer.Option("", "--role", "-r", help="角色定位"),
):
    """添加角色"""

    def change(studio: StorybookStudio, book: Storybook) -> str:
        character = studio.state.add_character(book.id, name, description, role)
        return f"已添加角色 {character.name} (第 {len(book.characters)} 个)"

    _edit(book_id, change)


@app.command("remove-character")
def remove_character(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    index: int = typer.Argument(..., help="角色序号（从 1 开始）"),
    yes: bool = typer.Option(False, "--yes", "-y", help="不再确认"),
):
    """删除角色"""
    if not yes and not typer.confirm(f"确定删除第 {index} 个角色吗?"):
        raise typer.Exit()

    def change(studio: StorybookStudio, book: Storybook) -> str:
        i = _check_index(index, len(book.characters), "角色")
        return f"已删除角色 {studio.state.remove_character(book.id, i).name}"

    _edit(book_id, change)


@app.command("rename-character")
def rename_character(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    index: int = typer.Argument(..., help="角色序号（从 1 开始）"),
    name: str = typer.Argument(..., help="新名字"),
):
    """修改角色名"""

    def change(studio: StorybookStudio, book: Storybook) -> str:
        i = _check_index(index, len(book.characters), "角色")
        return f"角色名已修改为 {studio.state.rename_character(book.id, i, name).name}"

    _edit(book_id, change)


@app.command("upload-character")
def upload_character(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    index: int = typer.Argument(..., help="角色序号（从 1 开始）"),
    image: str = typer.Argument(..., help="本地图片路径 (最大 5MB)"),
):
    """上传图片作为角色参考图"""

    def change(studio: StorybookStudio, book: Storybook) -> str:
        i = _check_index(index, len(book.characters), "角色")
        return f"角色 {studio.upload_character_image(book, i, image).name} 的参考图已更新"

    _edit(book_id, change)


@app.command("edit-page")
def edit_page(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    page: int = typer.Argument(..., help="页码"),
    text: str = typer.Argument(..., help="新的页面内容"),
):
    """修改页面文字"""

    def change(studio: StorybookStudio, book: Storybook) -> str:
        i = _check_index(page, len(book.pages), "页面")
        studio.state.edit_page_text(book.id, i, text)
        return f"第 {page} 页已更新"

    _edit(book_id, change)


@app.command("edit-word")
def edit_word(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    index: int = typer.Argument(..., help="单词序号（从 1 开始）"),
    word: Optional[str] = typer.Option(None, "--word", "-w", help="英文单词"),
    korean: Optional[str] = typer.Option(None, "--korean", "-k", help="韩文释义"),
):
    """修改学习单词"""

    def change(studio: StorybookStudio, book: Storybook) -> str:
        i = _check_index(index, len(book.educational_content.vocabulary), "单词")
        item = studio.state.edit_vocabulary(book.id, i, word, korean)
        return f"单词已修改为 {item.word} ({item.korean or '-'})"

    _edit(book_id, change)


@app.command()
def characters(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    index: Optional[int] = typer.Option(None, "--index", "-i", help="只生成第几个角色（从 1 开始）"),
    description: Optional[str] = typer.Option(None, "--description", "-d", help="新的角色描述"),
    yes: bool = typer.Option(False, "--yes", "-y", help="不再确认"),
):
    """生成角色参考图（默认并行生成所有缺少参考图的角色）"""

    async def action(studio: StorybookStudio) -> None:
        book = _book(studio, book_id)
        if index is not None:
            i = _check_index(index, len(book.characters), "角色")
            _print_result(book.characters[i].name, await studio.generate_character(book, i, description))
        else:
            _print_report("角色参考图", await studio.generate_all_characters(book))
        await _save_artifacts(studio, book)

    _run(action, yes)


@app.command()
def illustrations(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    mode: GenerationMode = typer.Option(GenerationMode.PARALLEL, "--mode", help="parallel(并行) 或 sequential(顺序)"),
    page: Optional[int] = typer.Option(None, "--page", help="只生成某一页"),
    edit_note: str = typer.Option("", "--edit", "-e", help="修改说明（重新生成单页时使用）"),
    with_page: list[int] = typer.Option([], "--with-page", help="额外参考的页面插图，可重复"),
    yes: bool = typer.Option(False, "--yes", "-y", help="不再确认"),
):
    """生成页面插图"""

    async def action(studio: StorybookStudio) -> None:
        book = _book(studio, book_id)
        if page is not None:
            selected = [
                book.pages[n - 1].illustration_image
                for n in with_page
                if 0 < n <= len(book.pages) and book.pages[n - 1].illustration_image
            ]
            i = _check_index(page, len(book.pages), "页面")
            result = await studio.generate_illustration(book, i, edit_note, selected)
            _print_result(f"第 {page} 页", result)
        else:
            _print_report("插图", await studio.generate_all_illustrations(book, mode))
        await _save_artifacts(studio, book)

    _run(action, yes)


@app.command()
def vocabulary(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    key_objects: bool = typer.Option(False, "--key-objects", help="同时生成关键物品图片"),
    yes: bool = typer.Option(False, "--yes", "-y", help="不再确认"),
):
    """生成单词卡片图片"""

    async def action(studio: StorybookStudio) -> None:
        book = _book(studio, book_id)
        if key_objects:
            for i, key_object in enumerate(book.key_objects):
                if not key_object.image_url:
                    _print_result(key_object.name, await studio.generate_key_object(book, i))
        _print_report("单词卡片", await studio.generate_all_vocabulary(book))
        await _save_artifacts(studio, book)

    _run(action, yes)


@app.command()
def cover(book_id: str = typer.Argument(..., help="绘本 ID")):
    """生成封面"""

    async def action(studio: StorybookStudio) -> None:
        book = _book(studio, book_id)
        _print_result("封面", await studio.generate_cover(book))
        await _save_artifacts(studio, book)

    _run(action)


@app.command()
def narrate(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    page: Optional[int] = typer.Option(None, "--page", help="只生成某一页"),
    voice: Optional[str] = typer.Option(None, "--voice", help="声音名称，如 Kore、Puck"),
    yes: bool = typer.Option(False, "--yes", "-y", help="不再确认"),
):
    """生成朗读音频"""

    async def action(studio: StorybookStudio) -> None:
        book = _book(studio, book_id)
        if page is not None:
            i = _check_index(page, len(book.pages), "页面")
            _print_result(f"第 {page} 页朗读", await studio.generate_narration(book, i, voice))
        else:
            _print_report("朗读", await studio.generate_all_narration(book))
        await _save_artifacts(studio, book)

    _run(action, yes)


@app.command()
def quiz(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    count: int = typer.Option(5, "--count", "-n", help="题目数量", min=1, max=10),
):
    """生成阅读理解测验"""

    async def action(studio: StorybookStudio) -> None:
        book = _book(studio, book_id)
        quizzes = await studio.generate_quizzes(book, count)
        for i, item in enumerate(quizzes, start=1):
            console.print(f"[bold]{i}. {item.question}[/bold]")
            for j, option in enumerate(item.options):
                mark = "[green]✓[/green]" if j == item.answer_index else " "
                console.print(f"   {mark} {option}")
        await _save_artifacts(studio, book)

    _run(action)


@app.command()
def export(
    book_id: str = typer.Argument(..., help="绘本 ID"),
    output: Optional[str] = typer.Option(None, "--output", "-o", help="导出目录 (默认: <output_dir>/<ID>)"),
):
    """导出绘本文本和所有已生成的文件"""

    async def action(studio: StorybookStudio) -> None:
        book = _book(studio, book_id)
        result = await studio.export(book, output)
        console.print(f"[green]已导出 {len(result.files)} 个文件到: {result.directory}[/green]")
        for name, error in result.failed.items():
            console.print(f"  [yellow]⚠ {name}: {error}[/yellow]")

    _run(action)


@app.command("prefs")
def preferences(
    values: list[str] = typer.Argument(None, help="要修改的设置，形如 aspect_ratio=1:1"),
    reset: bool = typer.Option(False, "--reset", help="恢复默认设置"),
):
    """查看或修改生成偏好设置"""

    async def action(studio: StorybookStudio) -> None:
        state = studio.state
        if reset:
            state.reset_preferences()
        elif values:
            updates = {}
            for item in values:
                key, sep, value = item.partition("=")
                if not sep or key not in GenerationPreferences.model_fields:
                    console.print(f"[red]无效的设置: {item}[/red]")
                    raise typer.Exit(1)
                updates[key] = value
            try:
                merged = GenerationPreferences.model_validate({**state.preferences.model_dump(), **updates})
            except ValidationError as e:
                console.print(f"[red]参数错误: {e.errors()[0]['msg']}[/red]")
                raise typer.Exit(1)
            state.save_preferences(merged)

        table = Table(title="生成偏好设置")
        table.add_column("设置")
        table.add_column("值")
        for key, value in state.preferences.model_dump().items():
            table.add_row(key, str(value))
        console.print(table)

    _run(action)


@app.command("api-key")
def api_key(
    key: Optional[str] = typer.Argument(None, help="自定义 API 密钥，留空则恢复默认密钥"),
):
    """设置自定义 Gemini API 密钥"""
    settings = get_settings()
    credentials = CredentialProvider(settings, FileStorage(settings.storage_path, settings.storage_quota_bytes))
    try:
        credentials.set_custom_key(key or "")
    except StorybookError as e:
        console.print(f"[red]{e}[/red]")
        raise typer.Exit(1)
    if key:
        console.print("[green]已保存自定义 API 密钥[/green]")
    else:
        console.print("[green]已恢复默认 API 密钥[/green]")


@app.command()
def version():
    """显示版本信息"""
    from . import __version__

    console.print(f"storybook-studio v{__version__}")


if __name__ == "__main__":
    app()
